"""
RECALL Node - Recall the vendor's learned memories and apply the eligible ones
"""
from app.nodes.base_node import DeterministicNode
from core.config.config import PipelineSettings
from core.memory.memory_store import MemoryStore
from core.models.memory import MemoryEntry, RuleKind
from core.models.state import ProcessingState
from core.utils.helpers import find_first_date, round_money
from core.utils.logging_config import get_logger
from core.utils.state_manager import NO_APPLICABLE_MEMORY, state_manager
from core.utils.triggers import Trigger

logger = get_logger(__name__)


class RecallNode(DeterministicNode):
    """
    RECALL node: Fetch learned rules for the vendor and auto-apply them

    Responsibilities:
    - Recall memories (this snapshot is what every later stage sees)
    - Report entries whose confidence is too low to auto-apply
    - Dispatch eligible entries by rule kind: service-date mapping,
      VAT-inclusive correction, SKU mapping, DN-priority arming
    - Boost confidence proportionally to each applied memory's confidence
    """

    SERVICE_DATE_WEIGHT = 0.10
    SKU_WEIGHT = 0.10
    VAT_WEIGHT = 0.15
    VAT_DIVISOR = 1.19
    NO_MEMORY_PENALTY = 0.05
    # Fixed gate for the no-memory nudge, independent of the auto-accept threshold
    NO_MEMORY_GATE = 0.8

    def __init__(self, settings: PipelineSettings, memory_store: MemoryStore):
        super().__init__(name="RECALL", settings=settings)
        self.memory_store = memory_store
        self.apply_threshold = settings.thresholds.memory_apply
        self.recall_threshold = settings.thresholds.min_recall_confidence
        self._appliers = {
            RuleKind.SERVICE_DATE_MAPPING: self._apply_service_date,
            RuleKind.VAT_INCLUSIVE: self._apply_vat_inclusive,
            RuleKind.SKU_MAPPING: self._apply_sku_mapping,
            RuleKind.DN_PRIORITY: self._apply_dn_priority,
        }

    def execute(self, state: ProcessingState) -> ProcessingState:
        """
        Execute RECALL logic

        Args:
            state: Current pipeline state

        Returns:
            Updated state with memories, applied corrections and confidence
        """
        self.validate_required_fields(state, ['invoice', 'normalized_invoice'])

        invoice = state['invoice']
        audit = state['audit_trail']

        audit.record('recall', f"Fetching memories for {invoice.vendor}")
        memories = self.memory_store.recall(invoice.vendor, min_confidence=self.recall_threshold)
        state['memories'] = memories

        if not memories:
            audit.record('recall', "No past memories found for this vendor.")

        eligible = [m for m in memories if m.confidence > self.apply_threshold]
        for memory in memories:
            if memory.confidence <= self.apply_threshold:
                state['memory_updates'].append(
                    f"Skipped {memory.memory_type.value} '{memory.key}': "
                    f"confidence too low ({memory.confidence:.2f})."
                )

        if not eligible:
            if memories:
                state['reasoning'] = "Found memories but confidence too low to auto-apply."
                audit.record('apply', "Skipped low-confidence memories.")
            if state['confidence_score'] < self.NO_MEMORY_GATE:
                state_manager.adjust_confidence(state, -self.NO_MEMORY_PENALTY)
            logger.info(f"No eligible memories for {invoice.vendor} ({len(memories)} recalled)")
            return state

        applied = 0
        for memory in eligible:
            applier = self._appliers.get(memory.rule_kind)
            if applier is None:
                continue
            if applier(state, memory):
                state_manager.mark_applied(state, memory.id, memory.rule_kind.value)
                applied += 1

        if applied:
            state['reasoning'] = f"Applied {applied} learned patterns."
        else:
            state['reasoning'] = NO_APPLICABLE_MEMORY

        logger.info(
            f"Recall complete for {invoice.vendor} - recalled: {len(memories)}, "
            f"eligible: {len(eligible)}, applied: {applied}"
        )
        return state

    def _apply_service_date(self, state: ProcessingState, memory: MemoryEntry) -> bool:
        """Map a vendor-specific label (e.g. 'Leistungsdatum') to the service date"""
        raw_text = state['invoice'].raw_text
        if not Trigger.substring(memory.key).matches(raw_text):
            return False

        service_date = find_first_date(raw_text) or self.settings.service_date_fallback
        state['normalized_invoice'].fields.service_date = service_date

        state['proposed_corrections'].append(
            f"Extracted Service Date '{service_date}' from '{memory.key}' "
            f"(Memory Confidence: {memory.confidence:.2f})"
        )
        state['audit_trail'].record('apply', f"Mapped '{memory.key}' to serviceDate using memory.")
        state_manager.adjust_confidence(state, self.SERVICE_DATE_WEIGHT * memory.confidence)
        return True

    def _apply_vat_inclusive(self, state: ProcessingState, memory: MemoryEntry) -> bool:
        """Treat the gross total as VAT-inclusive and back-calculate net and tax"""
        fields = state['normalized_invoice'].fields
        gross_total = state['invoice'].fields.gross_total

        net_total = round_money(gross_total / self.VAT_DIVISOR)
        tax_total = round_money(gross_total - net_total)
        fields.net_total = net_total
        fields.tax_total = tax_total

        state['proposed_corrections'].append(
            f"Recalculated Net: {net_total:.2f} / Tax: {tax_total:.2f} based on learned "
            f"VAT-inclusive pattern (Confidence: {memory.confidence:.2f})."
        )
        state['audit_trail'].record('apply', "Applied VAT-inclusive correction pattern.")
        state_manager.adjust_confidence(state, self.VAT_WEIGHT * memory.confidence)
        return True

    def _apply_sku_mapping(self, state: ProcessingState, memory: MemoryEntry) -> bool:
        """Assign a learned SKU to the line items its keyword describes"""
        keyword = Trigger.substring(memory.key)
        items = state['normalized_invoice'].fields.line_items

        described = [item for item in items if keyword.matches(item.description)]
        if not described and not keyword.matches(state['invoice'].raw_text):
            return False

        # Keyword only in the surrounding text: it describes the whole invoice
        targets = described or items

        mapped = 0
        for item in targets:
            if item.sku:
                continue
            item.sku = memory.value
            item.description = f"{item.description} ({memory.value})"
            mapped += 1

        if not mapped:
            return False

        state['proposed_corrections'].append(
            f"Assigned {memory.value} to line items based on keyword '{memory.key}' "
            f"(Confidence: {memory.confidence:.2f})."
        )
        state['audit_trail'].record('apply', f"Mapped keyword '{memory.key}' to SKU '{memory.value}'.")
        state_manager.adjust_confidence(state, self.SKU_WEIGHT * memory.confidence)
        return True

    def _apply_dn_priority(self, state: ProcessingState, memory: MemoryEntry) -> bool:
        """DN-priority acts during three-way matching; it only counts with a PO"""
        if not state['normalized_invoice'].fields.po_number:
            return False

        state['audit_trail'].record('apply', "Armed learned delivery-note priority for quantity mismatches.")
        return True
