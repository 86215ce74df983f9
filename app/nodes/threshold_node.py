"""
THRESHOLD Node - Send low-confidence invoices to human review
"""
from app.nodes.base_node import DeterministicNode
from core.config.config import PipelineSettings
from core.models.state import ProcessingState
from core.utils.logging_config import get_logger
from core.utils.state_manager import state_manager

logger = get_logger(__name__)


class ThresholdNode(DeterministicNode):
    """
    THRESHOLD node: Catch-all confidence gate

    Responsibilities:
    - If confidence is below the auto-accept threshold and no earlier
      stage already forced review: force review
    """

    def __init__(self, settings: PipelineSettings):
        super().__init__(name="THRESHOLD", settings=settings)
        self.auto_accept_threshold = settings.thresholds.auto_accept

    def execute(self, state: ProcessingState) -> ProcessingState:
        """
        Execute THRESHOLD logic

        Args:
            state: Current pipeline state

        Returns:
            Updated state with the review flag set when confidence is too low
        """
        confidence = state['confidence_score']

        if confidence < self.auto_accept_threshold and not state['requires_human_review']:
            state_manager.force_review(
                state, f"Confidence score is below threshold ({self.auto_accept_threshold:.0%})."
            )
            state['audit_trail'].record('decide', f"Escalated: Confidence score {confidence:.2f} below threshold.")
            logger.info(f"Confidence {confidence:.2f} below threshold {self.auto_accept_threshold:.2f}")

        return state
