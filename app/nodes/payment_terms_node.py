"""
PAYMENT_TERMS Node - Surface vendor discount terms (informational only)
"""
from app.nodes.base_node import LearningNode
from core.config.config import PipelineSettings
from core.memory.memory_store import MemoryStore
from core.models.memory import PAYMENT_TERMS_KEY, MemoryType, RuleKind
from core.models.state import ProcessingState
from core.utils.logging_config import get_logger
from core.utils.state_manager import state_manager
from core.utils.triggers import compile_triggers, first_match

logger = get_logger(__name__)


class PaymentTermsNode(LearningNode):
    """
    PAYMENT_TERMS node: Note payment terms; totals are never changed

    Responsibilities:
    - Prefer the vendor's learned payment terms
    - Else detect a declared discount-term marker and learn it
    """

    LEARNED_WEIGHT = 0.1

    def __init__(self, settings: PipelineSettings, memory_store: MemoryStore):
        super().__init__(name="PAYMENT_TERMS", settings=settings, memory_store=memory_store)
        self.min_confidence = settings.thresholds.learned_preference
        self.terms = {
            terms: compile_triggers(specs)
            for terms, specs in settings.discount_terms.items()
        }

    def execute(self, state: ProcessingState) -> ProcessingState:
        """
        Execute PAYMENT_TERMS logic

        Args:
            state: Current pipeline state

        Returns:
            Updated state with an informational correction when terms are known
        """
        self.validate_required_fields(state, ['invoice'])

        learned = [
            m for m in state['memories']
            if m.rule_kind == RuleKind.PAYMENT_TERMS and m.confidence > self.min_confidence
        ]
        if learned:
            memory = learned[0]
            state_manager.mark_applied(state, memory.id, memory.rule_kind.value)
            state['proposed_corrections'].append(
                f"Applied learned Payment Terms: {memory.value} (Confidence: {memory.confidence:.2f})"
            )
            state_manager.append_reasoning(
                state, f"Noted payment terms {memory.value}.", opener="Applied learned patterns."
            )
            state['audit_trail'].record('apply', f"Applied learned payment terms: {memory.value}.")
            state_manager.adjust_confidence(state, self.LEARNED_WEIGHT * memory.confidence)
            return state

        raw_text = state['invoice'].raw_text
        for terms, triggers in self.terms.items():
            marker = first_match(triggers, raw_text)
            if marker is None:
                continue

            logger.info(f"Detected payment terms '{terms}' via marker '{marker}'")
            state['proposed_corrections'].append(f"Detected Payment Terms: {terms}")
            self.remember(
                state,
                MemoryType.VENDOR_PREFERENCE,
                PAYMENT_TERMS_KEY,
                terms,
                f"Insight: {marker} terms detected and recorded."
            )
            break

        return state
