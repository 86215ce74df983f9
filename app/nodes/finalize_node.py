"""
FINALIZE Node - Settle the decision and close the audit trail
"""
from app.nodes.base_node import DeterministicNode
from core.config.config import PipelineSettings
from core.models.state import ProcessingState
from core.utils.helpers import clamp
from core.utils.logging_config import get_logger

logger = get_logger(__name__)


class FinalizeNode(DeterministicNode):
    """
    FINALIZE node: Clamp confidence and record the final decision

    Responsibilities:
    - Clamp confidence to [0, 1]
    - Append the final "decide" audit entry (accept or review, with confidence)
    - Mark the pipeline complete
    """

    def __init__(self, settings: PipelineSettings):
        super().__init__(name="FINALIZE", settings=settings)

    def execute(self, state: ProcessingState) -> ProcessingState:
        """
        Execute FINALIZE logic

        Args:
            state: Current pipeline state

        Returns:
            Updated state with final status
        """
        self.validate_required_fields(state, ['invoice', 'audit_trail'])

        confidence = clamp(state['confidence_score'])
        state['confidence_score'] = confidence

        decision = 'Human Review' if state['requires_human_review'] else 'Auto-Accept'
        state['audit_trail'].record('decide', f"Final Decision: {decision} (Confidence: {confidence:.2f})")
        state['status'] = 'REVIEW_REQUIRED' if state['requires_human_review'] else 'AUTO_ACCEPTED'

        logger.info(
            f"Review complete - Invoice: {state['invoice'].invoice_id}, "
            f"Decision: {decision}, Confidence: {confidence:.2f}, "
            f"Corrections: {len(state['proposed_corrections'])}"
        )

        return state
