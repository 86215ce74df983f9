"""
CURRENCY Node - Recover a missing invoice currency
"""
from typing import Optional

from app.nodes.base_node import LearningNode
from core.config.config import PipelineSettings
from core.memory.memory_store import MemoryStore
from core.models.memory import DEFAULT_CURRENCY_KEY, MemoryEntry, MemoryType, RuleKind
from core.models.state import ProcessingState
from core.utils.logging_config import get_logger
from core.utils.state_manager import state_manager
from core.utils.triggers import compile_triggers, first_match

logger = get_logger(__name__)


class CurrencyNode(LearningNode):
    """
    CURRENCY node: Fill in the currency when extraction missed it

    Responsibilities:
    - Prefer the vendor's learned default currency
    - Else detect a declared currency code or symbol in the raw text
      and learn it as the vendor's default
    """

    LEARNED_WEIGHT = 0.1

    def __init__(self, settings: PipelineSettings, memory_store: MemoryStore):
        super().__init__(name="CURRENCY", settings=settings, memory_store=memory_store)
        self.min_confidence = settings.thresholds.learned_preference
        self.markers = {
            currency: compile_triggers(specs)
            for currency, specs in settings.currency_markers.items()
        }

    def execute(self, state: ProcessingState) -> ProcessingState:
        """
        Execute CURRENCY logic

        Args:
            state: Current pipeline state

        Returns:
            Updated state, with currency set when recovered
        """
        self.validate_required_fields(state, ['invoice', 'normalized_invoice'])

        fields = state['normalized_invoice'].fields
        if fields.currency:
            return state

        memory = self._find_learned_currency(state)
        if memory is not None:
            fields.currency = memory.value
            state_manager.mark_applied(state, memory.id, memory.rule_kind.value)
            state['proposed_corrections'].append(
                f"Applied learned currency '{memory.value}' (Confidence: {memory.confidence:.2f})"
            )
            state_manager.append_reasoning(
                state, f"Applied learned currency {memory.value}.", opener="Applied learned patterns."
            )
            state['audit_trail'].record('apply', f"Applied learned default currency {memory.value}.")
            state_manager.adjust_confidence(state, self.LEARNED_WEIGHT * memory.confidence)
            return state

        currency = self._detect_currency(state['invoice'].raw_text)
        if currency is None:
            logger.warning(f"Currency missing on {state['invoice'].invoice_id} and not recoverable from text")
            return state

        fields.currency = currency
        state['proposed_corrections'].append(f"Recovered currency '{currency}' from raw text.")
        state_manager.append_reasoning(state, "Recovered missing currency.", opener="Applied heuristics.")
        state['audit_trail'].record('apply', "Heuristic: Recovered currency from raw text.")

        self.remember(
            state,
            MemoryType.VENDOR_PREFERENCE,
            DEFAULT_CURRENCY_KEY,
            currency,
            f"Learned: {state['invoice'].vendor} invoices in {currency}."
        )
        return state

    def _find_learned_currency(self, state: ProcessingState) -> Optional[MemoryEntry]:
        for memory in state['memories']:
            if memory.rule_kind == RuleKind.DEFAULT_CURRENCY and memory.confidence > self.min_confidence:
                return memory
        return None

    def _detect_currency(self, raw_text: str) -> Optional[str]:
        for currency, triggers in self.markers.items():
            if first_match(triggers, raw_text) is not None:
                return currency
        return None
