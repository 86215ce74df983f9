"""
Append-only audit trail recorded during one pipeline run
"""
from datetime import datetime
from typing import Callable, List, Optional

from core.models.result import AuditStep, AUDIT_STEPS


class AuditTrail:
    """
    Records recall/apply/decide/learn events in execution order

    Entries are never reordered or deduplicated, and timestamps never go
    backwards even if the clock does.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or datetime.utcnow
        self._steps: List[AuditStep] = []

    def record(self, step: str, details: str) -> AuditStep:
        """
        Append one audit entry

        Args:
            step: One of recall, apply, decide, learn
            details: Human-readable description

        Returns:
            The recorded AuditStep
        """
        if step not in AUDIT_STEPS:
            raise ValueError(f"Unknown audit step: {step}")

        timestamp = self._clock()
        if self._steps and timestamp < self._steps[-1].timestamp:
            timestamp = self._steps[-1].timestamp

        entry = AuditStep(step=step, timestamp=timestamp, details=details)
        self._steps.append(entry)
        return entry

    def now(self) -> datetime:
        """Current time on the clock this trail stamps entries with"""
        return self._clock()

    @property
    def steps(self) -> List[AuditStep]:
        return list(self._steps)

    def __len__(self):
        return len(self._steps)
