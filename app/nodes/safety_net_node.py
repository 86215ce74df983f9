"""
SAFETY_NET Node - Escalate risks the learned rules did not resolve
"""
from typing import List, Optional

from app.nodes.base_node import DeterministicNode
from core.config.config import PipelineSettings
from core.models.memory import SKU_PREFIX, RuleKind
from core.models.state import ProcessingState
from core.utils.logging_config import get_logger
from core.utils.state_manager import state_manager
from core.utils.triggers import Trigger, compile_triggers, first_match

logger = get_logger(__name__)


class SafetyNetNode(DeterministicNode):
    """
    SAFETY_NET node: Independent last-line checks on the raw text

    Responsibilities:
    - Service-date marker present but no service-date mapping applied
    - VAT-inclusive language present but no VAT correction applied
    - Shipping marker present but no SKU on any line item
    - Each hit forces review, costs confidence and rewrites the reasoning
    """

    def __init__(self, settings: PipelineSettings):
        super().__init__(name="SAFETY_NET", settings=settings)
        self.service_date_markers = compile_triggers(settings.service_date_check.markers)
        self.vat_markers = compile_triggers(settings.vat_inclusive_check.markers)
        self.shipping_markers = compile_triggers(settings.shipping_check.markers)

    def execute(self, state: ProcessingState) -> ProcessingState:
        """
        Execute SAFETY_NET logic

        Args:
            state: Current pipeline state

        Returns:
            Updated state, escalated for every unresolved risk
        """
        self.validate_required_fields(state, ['invoice', 'normalized_invoice'])

        raw_text = state['invoice'].raw_text
        applied = state['applied_rule_kinds']

        if RuleKind.SERVICE_DATE_MAPPING.value not in applied:
            marker = first_match(self.service_date_markers, raw_text)
            if marker is not None:
                self._escalate(
                    state,
                    self.settings.service_date_check.penalty,
                    f"Found '{marker}' but don't know how to map it yet.",
                    f"Escalated: Unmapped '{marker}' field."
                )

        if RuleKind.VAT_INCLUSIVE.value not in applied:
            if first_match(self.vat_markers, raw_text) is not None:
                self._escalate(
                    state,
                    self.settings.vat_inclusive_check.penalty,
                    "Detected VAT-inclusive language but math indicates Gross was treated as Net.",
                    "Escalated: Potential VAT-inclusive calculation error."
                )

        marker = self._unassigned_shipping_marker(state, raw_text)
        if marker is not None:
            self._escalate(
                state,
                self.settings.shipping_check.penalty,
                f"Detected '{marker}' service but no SKU is assigned.",
                "Escalated: Missing SKU for freight service."
            )

        return state

    def _unassigned_shipping_marker(self, state: ProcessingState, raw_text: str) -> Optional[Trigger]:
        marker = first_match(self.shipping_markers, raw_text)
        if marker is None:
            return None

        line_items = state['normalized_invoice'].fields.line_items
        if any(item.sku and SKU_PREFIX in item.sku for item in line_items):
            return None
        return marker

    def _escalate(self, state: ProcessingState, penalty: float, reason: str, audit_details: str):
        logger.warning(f"Safety net fired for {state['invoice'].invoice_id}: {reason}")
        state_manager.force_review(state, reason, replace_reasoning=True)
        state_manager.adjust_confidence(state, -penalty)
        state['audit_trail'].record('decide', audit_details)
