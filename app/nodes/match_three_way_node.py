"""
MATCH_THREE_WAY Node - Cross-check invoice quantities against PO and Delivery Note
"""
from typing import Callable, Optional

from app.nodes.base_node import DeterministicNode
from core.config.config import PipelineSettings
from core.models.invoice import DeliveryNote, DNLineItem, LineItem, POLineItem, PurchaseOrder
from core.models.memory import MemoryEntry, RuleKind
from core.models.state import ProcessingState
from core.utils.error_handler import MatchingError
from core.utils.logging_config import get_logger
from core.utils.state_manager import state_manager
from integrations.catalog.reference_catalog import ReferenceCatalog

logger = get_logger(__name__)


class MatchThreeWayNode(DeterministicNode):
    """
    MATCH_THREE_WAY node: Validate line quantities against reference documents

    Responsibilities:
    - Locate the PO named on the invoice (absent PO: nothing to check)
    - Pair each line item with a PO item by SKU or exact unit price
    - On a quantity difference, consult the Delivery Note:
      - DN agrees with the invoice: verified match, confidence boost
      - DN disagrees: auto-adjust under a learned DN-priority rule,
        otherwise flag the discrepancy for review
      - No DN (or no DN line for the item): force review
    """

    VERIFIED_BOOST = 0.1

    def __init__(self, settings: PipelineSettings, catalog: ReferenceCatalog):
        super().__init__(name="MATCH_THREE_WAY", settings=settings)
        self.catalog = catalog
        self.dn_priority_threshold = settings.thresholds.dn_priority

    def execute(self, state: ProcessingState) -> ProcessingState:
        """
        Execute MATCH_THREE_WAY logic

        Args:
            state: Current pipeline state

        Returns:
            Updated state with verified or adjusted quantities
        """
        self.validate_required_fields(state, ['invoice', 'normalized_invoice'])

        fields = state['normalized_invoice'].fields
        if not fields.po_number:
            return state

        po = self._lookup(self.catalog.find_po, fields.po_number)
        if po is None:
            logger.warning(f"PO {fields.po_number} not in reference data, skipping 3-way match")
            return state

        vendor = state['invoice'].vendor
        for item in fields.line_items:
            po_item = self._match_po_item(item, po)
            if po_item is None or item.qty == po_item.qty:
                continue

            logger.info(
                f"Quantity differs from PO {po.po_number} "
                f"(invoice: {item.qty}, PO: {po_item.qty}), consulting delivery note"
            )
            dn = self._lookup(self.catalog.find_dn, po.po_number, vendor)
            if dn is None:
                state_manager.force_review(state, "Quantity mismatch vs PO, and no Delivery Note found.")
                state['audit_trail'].record('decide', "Quantity mismatch vs PO; DN missing.")
                continue

            dn_item = self._match_dn_item(item, po_item, dn)
            if dn_item is None:
                state_manager.force_review(
                    state, f"Quantity mismatch vs PO, and Delivery Note {dn.dn_number} lists no matching item."
                )
                state['audit_trail'].record('decide', f"Quantity mismatch vs PO; no line on DN {dn.dn_number}.")
                continue

            if item.qty == dn_item.qty_delivered:
                self._record_verified(state, item, dn)
            else:
                self._resolve_dn_discrepancy(state, item, dn_item, dn)

        return state

    def _lookup(self, finder: Callable, *args):
        """Run a catalog lookup, reporting any failure as a MatchingError"""
        try:
            return finder(*args)
        except Exception as e:
            raise MatchingError(
                f"Reference lookup {finder.__name__}{args} failed: {e}",
                node=self.name,
                details={'lookup': finder.__name__}
            ) from e

    def _match_po_item(self, item: LineItem, po: PurchaseOrder) -> Optional[POLineItem]:
        """Find the PO line for an invoice line, by SKU or exact unit price"""
        for po_item in po.line_items:
            if item.sku and po_item.sku == item.sku:
                return po_item
            if po_item.unit_price == item.unit_price:
                return po_item
        return None

    def _match_dn_item(self, item: LineItem, po_item: POLineItem, dn: DeliveryNote) -> Optional[DNLineItem]:
        """Find the delivered line matching either the invoice or PO SKU"""
        skus = {sku for sku in (item.sku, po_item.sku) if sku}
        for dn_item in dn.line_items:
            if dn_item.sku in skus:
                return dn_item
        return None

    def _record_verified(self, state: ProcessingState, item: LineItem, dn: DeliveryNote):
        state_manager.append_reasoning(
            state,
            f"Verified Qty {item.qty:g} against Delivery Note {dn.dn_number}.",
            opener="Verified data against reference documents."
        )
        state['proposed_corrections'].append(
            f"Verified Qty {item.qty:g} against Delivery Note {dn.dn_number} (3-Way Match)."
        )
        state['audit_trail'].record('decide', f"3-Way Match Success: Invoice Qty matches DN ({dn.dn_number}).")
        state_manager.adjust_confidence(state, self.VERIFIED_BOOST)

    def _resolve_dn_discrepancy(
        self,
        state: ProcessingState,
        item: LineItem,
        dn_item: DNLineItem,
        dn: DeliveryNote
    ):
        dn_priority = self._find_dn_priority(state)

        if dn_priority is None:
            state['proposed_corrections'].append(
                f"Qty Mismatch: Invoice says {item.qty:g}, but DN {dn.dn_number} says "
                f"{dn_item.qty_delivered:g}. Suggest Adjustment."
            )
            state_manager.force_review(state)
            state['audit_trail'].record('decide', "Quantity mismatch detected between Invoice and DN.")
            return

        old_qty = item.qty
        item.qty = dn_item.qty_delivered
        state_manager.mark_applied(state, dn_priority.id, dn_priority.rule_kind.value)
        state['proposed_corrections'].append(
            f"Auto-adjusted Qty from {old_qty:g} to {dn_item.qty_delivered:g} based on DN "
            f"{dn.dn_number} (Learned Preference)."
        )
        state_manager.append_reasoning(
            state,
            "Auto-corrected quantity based on learned DN priority.",
            opener="Applied learned corrections."
        )
        state['audit_trail'].record('apply', "Auto-adjusted quantity using DN priority memory.")

    def _find_dn_priority(self, state: ProcessingState) -> Optional[MemoryEntry]:
        for memory in state['memories']:
            if memory.rule_kind == RuleKind.DN_PRIORITY and memory.confidence > self.dn_priority_threshold:
                return memory
        return None
