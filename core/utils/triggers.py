"""
Declared text predicates used by pipeline stages

Every rule that fires on raw invoice text or a line description does so
through a Trigger, so each stage's matching can be listed and tested on
its own.
"""
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from core.config.config import TriggerSpec

SUBSTRING = 'substring'
REGEX = 'regex'
EXACT = 'exact'


@dataclass(frozen=True)
class Trigger:
    """A substring, regex or exact-match predicate over text"""
    pattern: str
    mode: str = SUBSTRING
    case_sensitive: bool = True

    def __post_init__(self):
        if self.mode not in (SUBSTRING, REGEX, EXACT):
            raise ValueError(f"Unknown trigger mode: {self.mode}")

    @classmethod
    def substring(cls, pattern: str) -> "Trigger":
        return cls(pattern=pattern, mode=SUBSTRING)

    @classmethod
    def from_spec(cls, spec: TriggerSpec) -> "Trigger":
        return cls(pattern=spec.pattern, mode=spec.mode, case_sensitive=spec.case_sensitive)

    def matches(self, text: Optional[str]) -> bool:
        """Check whether the predicate holds for text"""
        if not text:
            return False

        if self.mode == REGEX:
            flags = 0 if self.case_sensitive else re.IGNORECASE
            return re.search(self.pattern, text, flags) is not None

        pattern, candidate = self.pattern, text
        if not self.case_sensitive:
            pattern, candidate = pattern.lower(), candidate.lower()

        if self.mode == EXACT:
            return candidate.strip() == pattern
        return pattern in candidate

    def __str__(self):
        return self.pattern


def compile_triggers(specs: Iterable[TriggerSpec]) -> List[Trigger]:
    """Build Trigger objects from their YAML declarations"""
    return [Trigger.from_spec(spec) for spec in specs]


def first_match(triggers: Iterable[Trigger], text: Optional[str]) -> Optional[Trigger]:
    """Return the first trigger that fires on text, if any"""
    for trigger in triggers:
        if trigger.matches(text):
            return trigger
    return None
