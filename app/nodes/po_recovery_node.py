"""
PO_RECOVERY Node - Recover a missing PO number from memory, heuristics or configured fallbacks
"""
from typing import List, Optional, Tuple

from app.nodes.base_node import LearningNode
from core.config.config import PipelineSettings, POFallbackSpec
from core.memory.memory_store import MemoryStore
from core.models.invoice import LineItem, POLineItem, PurchaseOrder
from core.models.memory import PO_MATCH_PREFIX, MemoryEntry, MemoryType, RuleKind
from core.models.state import ProcessingState
from core.utils.logging_config import get_logger
from core.utils.state_manager import state_manager
from core.utils.triggers import Trigger
from integrations.catalog.reference_catalog import ReferenceCatalog

logger = get_logger(__name__)


class PORecoveryNode(LearningNode):
    """
    PO_RECOVERY node: Fill in the PO number when the invoice lacks one

    Responsibilities:
    - Prefer a learned po-match rule whose keyword appears in a line description
    - Else adopt the single vendor PO whose line matches an invoice line
      on unit price and quantity, and learn it as a po-match rule
    - Else apply a configured vendor-specific fallback, and learn it
    - Ambiguous or empty heuristic results leave the PO unset
    """

    LEARNED_WEIGHT = 0.15
    HEURISTIC_BOOST = 0.1

    def __init__(self, settings: PipelineSettings, memory_store: MemoryStore, catalog: ReferenceCatalog):
        super().__init__(name="PO_RECOVERY", settings=settings, memory_store=memory_store)
        self.catalog = catalog
        self.min_confidence = settings.thresholds.learned_preference

    def execute(self, state: ProcessingState) -> ProcessingState:
        """
        Execute PO_RECOVERY logic

        Args:
            state: Current pipeline state

        Returns:
            Updated state, with po_number set when recovered
        """
        self.validate_required_fields(state, ['invoice', 'normalized_invoice'])

        if state['normalized_invoice'].fields.po_number:
            return state

        line_items = state['invoice'].fields.line_items

        memory = self._find_learned_match(state['memories'], line_items)
        if memory is not None:
            self._apply_learned(state, memory)
            return state

        matches = self._heuristic_matches(state['invoice'].vendor, line_items)
        if len(matches) == 1:
            self._apply_heuristic(state, *matches[0])
            return state
        if matches:
            logger.info(f"{len(matches)} candidate POs match by price and quantity, not choosing one")

        fallback = self._find_fallback(state['invoice'].vendor, line_items)
        if fallback is not None:
            self._apply_fallback(state, fallback)

        return state

    def _find_learned_match(self, memories: List[MemoryEntry], line_items: List[LineItem]) -> Optional[MemoryEntry]:
        for memory in memories:
            if memory.rule_kind != RuleKind.PO_MATCH or memory.confidence <= self.min_confidence:
                continue
            keyword = Trigger.substring(memory.po_keyword)
            if any(keyword.matches(item.description) for item in line_items):
                return memory
        return None

    def _heuristic_matches(
        self,
        vendor: str,
        line_items: List[LineItem]
    ) -> List[Tuple[PurchaseOrder, LineItem, POLineItem]]:
        """Vendor POs with a line equal to an invoice line on price and quantity"""
        matches = []
        for po in self.catalog.purchase_orders_for_vendor(vendor):
            pair = self._first_identical_line(po, line_items)
            if pair is not None:
                matches.append((po, *pair))
        return matches

    @staticmethod
    def _first_identical_line(po: PurchaseOrder, line_items: List[LineItem]) -> Optional[Tuple[LineItem, POLineItem]]:
        for item in line_items:
            for po_item in po.line_items:
                if po_item.unit_price == item.unit_price and po_item.qty == item.qty:
                    return item, po_item
        return None

    def _find_fallback(self, vendor: str, line_items: List[LineItem]) -> Optional[POFallbackSpec]:
        for fallback in self.settings.po_fallbacks:
            if fallback.vendor != vendor:
                continue
            keyword = Trigger.substring(fallback.keyword)
            if any(keyword.matches(item.description) for item in line_items):
                return fallback
        return None

    def _apply_learned(self, state: ProcessingState, memory: MemoryEntry):
        state['normalized_invoice'].fields.po_number = memory.value
        state_manager.mark_applied(state, memory.id, memory.rule_kind.value)

        state['proposed_corrections'].append(
            f"Auto-matched {memory.value} based on learned keyword '{memory.po_keyword}' "
            f"(Confidence: {memory.confidence:.2f})"
        )
        state_manager.append_reasoning(
            state, f"Applied learned PO Match for {memory.value}.", opener="Applied learned patterns."
        )
        state['audit_trail'].record('apply', f"Matched PO {memory.value} using memory.")
        state_manager.adjust_confidence(state, self.LEARNED_WEIGHT * memory.confidence)
        logger.info(f"Recovered PO {memory.value} from learned keyword '{memory.po_keyword}'")

    def _apply_heuristic(self, state: ProcessingState, po: PurchaseOrder, item: LineItem, po_item: POLineItem):
        state['normalized_invoice'].fields.po_number = po.po_number

        state['proposed_corrections'].append(
            f"Auto-matched {po.po_number} based on item match "
            f"(Price: {po_item.unit_price:g}, Qty: {po_item.qty:g})"
        )
        state_manager.append_reasoning(
            state, f"Auto-matched single valid PO: {po.po_number}.", opener="Applied heuristics."
        )
        state['audit_trail'].record(
            'apply', f"Heuristic: Matched single valid PO {po.po_number} based on item details."
        )
        state_manager.adjust_confidence(state, self.HEURISTIC_BOOST)
        logger.info(f"Recovered PO {po.po_number} by unique price/quantity match")

        if item.description:
            self.remember(
                state,
                MemoryType.VENDOR_PREFERENCE,
                f"{PO_MATCH_PREFIX}{item.description}",
                po.po_number,
                f"Learned: '{item.description}' items map to {po.po_number}."
            )

    def _apply_fallback(self, state: ProcessingState, fallback: POFallbackSpec):
        state['normalized_invoice'].fields.po_number = fallback.po_number

        state['proposed_corrections'].append(
            f"Auto-matched {fallback.po_number} based on item '{fallback.keyword}'"
        )
        state_manager.append_reasoning(state, "Also applied heuristic PO Match.", opener="Applied heuristics.")
        state['audit_trail'].record('apply', "Heuristic: Matched PO based on line item description.")
        state_manager.adjust_confidence(state, self.HEURISTIC_BOOST)
        logger.info(f"Recovered PO {fallback.po_number} from configured fallback for {fallback.vendor}")

        self.remember(
            state,
            MemoryType.VENDOR_PREFERENCE,
            f"{PO_MATCH_PREFIX}{fallback.keyword}",
            fallback.po_number,
            f"Learned: '{fallback.keyword}' items map to {fallback.po_number}."
        )
