"""
DUPLICATE_CHECK Node - Detect resubmitted invoices before anything else runs
"""
from typing import Optional

from app.nodes.base_node import DeterministicNode
from core.config.config import PipelineSettings
from core.models.invoice import Invoice
from core.models.state import ProcessingState
from core.utils.helpers import days_between, parse_date
from core.utils.logging_config import get_logger
from core.utils.triggers import compile_triggers, first_match

logger = get_logger(__name__)

DUPLICATE_REASONING = "Possible Duplicate Submission Detected (Same Vendor + Invoice Number + Close Dates)."


class DuplicateCheckNode(DeterministicNode):
    """
    DUPLICATE_CHECK node: Flag later submissions of an already-seen invoice

    Responsibilities:
    - Compare against history: same vendor, same invoice number,
      different invoice id, dates within the duplicate window
    - Only the later-arriving invoice (greater id) is flagged
    - Honour an explicit duplicate marker in the raw text
    - On a hit, produce the terminal duplicate decision; learning is
      disabled for this invoice
    """

    def __init__(self, settings: PipelineSettings):
        super().__init__(name="DUPLICATE_CHECK", settings=settings)
        self.window_days = settings.thresholds.duplicate_window_days
        self.markers = compile_triggers(settings.duplicate_markers)

    def execute(self, state: ProcessingState) -> ProcessingState:
        """
        Execute DUPLICATE_CHECK logic

        Args:
            state: Current pipeline state

        Returns:
            Updated state; is_duplicate set on a hit
        """
        self.validate_required_fields(state, ['invoice', 'history'])

        invoice = state['invoice']
        earlier = self._find_earlier_submission(invoice, state['history'])
        marker = first_match(self.markers, invoice.raw_text)

        if earlier is None and marker is None:
            logger.info(f"No duplicate found for {invoice.invoice_id}")
            return state

        if earlier is not None:
            logger.warning(
                f"Duplicate invoice detected: {invoice.fields.invoice_number} from {invoice.vendor} "
                f"(earlier submission: {earlier.invoice_id})"
            )
        else:
            logger.warning(f"Invoice {invoice.invoice_id} carries duplicate marker '{marker}'")

        state['is_duplicate'] = True
        state['requires_human_review'] = True
        state['confidence_score'] = 0.0
        state['reasoning'] = DUPLICATE_REASONING
        state['memory_updates'].append("Warning: Duplicate detected. Learning disabled for this instance.")
        state['audit_trail'].record('decide', "Escalated: Duplicate invoice detected.")
        state['status'] = 'DUPLICATE'

        return state

    def _find_earlier_submission(self, invoice: Invoice, history) -> Optional[Invoice]:
        """Return the first history entry that this invoice duplicates"""
        current_date = parse_date(invoice.fields.invoice_date)

        for previous in history:
            if previous.invoice_id == invoice.invoice_id:
                continue
            if previous.vendor != invoice.vendor:
                continue
            if previous.fields.invoice_number != invoice.fields.invoice_number:
                continue
            # Only the later-arriving invoice is the duplicate
            if previous.invoice_id > invoice.invoice_id:
                continue

            previous_date = parse_date(previous.fields.invoice_date)
            if current_date is None or previous_date is None:
                logger.warning(
                    f"Cannot compare dates of {invoice.invoice_id} and {previous.invoice_id}; "
                    f"not treating as duplicate"
                )
                continue

            if days_between(current_date, previous_date) <= self.window_days:
                return previous

        return None
