"""
VENDOR_TRUST Node - Adjust confidence by the vendor's resolution history
"""
from app.nodes.base_node import DeterministicNode
from core.config.config import PipelineSettings
from core.models.memory import RuleKind
from core.models.state import ProcessingState
from core.utils.logging_config import get_logger
from core.utils.state_manager import state_manager

logger = get_logger(__name__)


class VendorTrustNode(DeterministicNode):
    """
    VENDOR_TRUST node: Penalise unreliable vendors, reward clean ones

    Responsibilities:
    - Rejection rate above 0.5: force review and scale confidence by 0.8
    - Rejection rate below 0.1 over at least two resolutions: boost,
      growing with usage (capped at ten uses) and shrinking with the rate
    """

    HIGH_REJECTION_RATE = 0.5
    LOW_REJECTION_RATE = 0.1
    MIN_RESOLUTIONS = 2
    PENALTY_FACTOR = 0.8
    BASE_BOOST = 0.1
    USAGE_BOOST = 0.15
    USAGE_CAP = 10

    def __init__(self, settings: PipelineSettings):
        super().__init__(name="VENDOR_TRUST", settings=settings)

    def execute(self, state: ProcessingState) -> ProcessingState:
        """
        Execute VENDOR_TRUST logic

        Args:
            state: Current pipeline state

        Returns:
            Updated state with trust-adjusted confidence
        """
        self.validate_required_fields(state, ['invoice', 'memories'])

        history = next(
            (m for m in state['memories'] if m.rule_kind == RuleKind.REJECTION_RATE),
            None
        )
        if history is None:
            return state

        rate = history.value
        if rate > self.HIGH_REJECTION_RATE:
            state_manager.force_review(state, "Vendor has high historical rejection rate.")
            state_manager.scale_confidence(state, self.PENALTY_FACTOR)
            state['audit_trail'].record('decide', "Escalated: High historical rejection rate for vendor.")
            logger.info(f"High rejection rate {rate:.2f} for {state['invoice'].vendor}")

        elif rate < self.LOW_REJECTION_RATE and history.usage_count >= self.MIN_RESOLUTIONS:
            usage_multiplier = min(history.usage_count / self.USAGE_CAP, 1.0)
            trust_boost = (self.BASE_BOOST + self.USAGE_BOOST * usage_multiplier) * (1 - rate)

            state_manager.adjust_confidence(state, trust_boost)
            state_manager.append_reasoning(
                state, f"Applied Vendor Trust Boost (+{trust_boost:.2f}) based on clean history."
            )
            state['audit_trail'].record(
                'decide',
                f"Trust Boost: Vendor has low rejection rate ({rate * 100:.0f}%) "
                f"over {history.usage_count} invoices."
            )

        return state
