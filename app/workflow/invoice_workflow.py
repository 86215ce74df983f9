"""
LangGraph Workflow - Invoice review pipeline orchestrator
"""
from datetime import datetime
from typing import Any, Callable, Iterable, List, Literal, Optional, Union

from langgraph.graph import StateGraph, END
from pydantic import ValidationError as PydanticValidationError

from app.nodes.currency_node import CurrencyNode
from app.nodes.duplicate_check_node import DuplicateCheckNode
from app.nodes.finalize_node import FinalizeNode
from app.nodes.match_three_way_node import MatchThreeWayNode
from app.nodes.payment_terms_node import PaymentTermsNode
from app.nodes.po_recovery_node import PORecoveryNode
from app.nodes.recall_node import RecallNode
from app.nodes.safety_net_node import SafetyNetNode
from app.nodes.threshold_node import ThresholdNode
from app.nodes.vendor_trust_node import VendorTrustNode
from core.config.config import PipelineSettings, load_settings
from core.memory.memory_store import MemoryStore
from core.models.invoice import Invoice
from core.models.result import ProcessingResult
from core.models.state import ProcessingState
from core.utils.error_handler import InvoiceNotFoundError, ValidationError
from core.utils.logging_config import get_logger
from core.utils.state_manager import state_manager
from integrations.catalog.reference_catalog import ReferenceCatalog

logger = get_logger(__name__)

InvoiceInput = Union[Invoice, dict]


# Conditional edge functions
def should_continue_after_duplicate(state: ProcessingState) -> Literal["end", "recall"]:
    """
    Stop the pipeline once a duplicate has been decided

    Args:
        state: Current pipeline state

    Returns:
        "end" for duplicates, "recall" otherwise
    """
    if state.get('is_duplicate'):
        logger.info("Duplicate detected - routing to END")
        return "end"
    return "recall"


def route_by_po_number(state: ProcessingState) -> Literal["match", "recover"]:
    """
    Route to three-way matching when the invoice names a PO, else to PO recovery

    Args:
        state: Current pipeline state

    Returns:
        "match" if a PO number is present, "recover" otherwise
    """
    if state['normalized_invoice'].fields.po_number:
        return "match"
    return "recover"


# Build the workflow graph
def create_workflow(
    settings: PipelineSettings,
    memory_store: MemoryStore,
    catalog: ReferenceCatalog
) -> StateGraph:
    """
    Create the invoice review workflow

    Optional stages (duplicate detection, three-way match, vendor trust)
    are wired in or left out according to settings.stages.

    Args:
        settings: Pipeline settings
        memory_store: Learned memory store
        catalog: Purchase order / delivery note lookup

    Returns:
        Uncompiled StateGraph
    """
    logger.info("Building invoice review workflow")
    stages = settings.stages

    workflow = StateGraph(ProcessingState)

    workflow.add_node("recall", RecallNode(settings, memory_store))
    workflow.add_node("po_recovery", PORecoveryNode(settings, memory_store, catalog))
    workflow.add_node("currency", CurrencyNode(settings, memory_store))
    workflow.add_node("payment_terms", PaymentTermsNode(settings, memory_store))
    workflow.add_node("safety_net", SafetyNetNode(settings))
    workflow.add_node("threshold", ThresholdNode(settings))
    workflow.add_node("finalize", FinalizeNode(settings))

    # DUPLICATE_CHECK → RECALL, or straight to END for duplicates
    if stages.duplicate_detection:
        workflow.add_node("duplicate_check", DuplicateCheckNode(settings))
        workflow.set_entry_point("duplicate_check")
        workflow.add_conditional_edges(
            "duplicate_check",
            should_continue_after_duplicate,
            {
                "end": END,
                "recall": "recall"
            }
        )
    else:
        workflow.set_entry_point("recall")

    # RECALL → MATCH_THREE_WAY (PO present) or PO_RECOVERY (PO absent)
    match_target = "currency"
    if stages.three_way_match:
        workflow.add_node("match_three_way", MatchThreeWayNode(settings, catalog))
        workflow.add_edge("match_three_way", "currency")
        match_target = "match_three_way"

    workflow.add_conditional_edges(
        "recall",
        route_by_po_number,
        {
            "match": match_target,
            "recover": "po_recovery"
        }
    )
    workflow.add_edge("po_recovery", "currency")

    # CURRENCY → PAYMENT_TERMS → SAFETY_NET
    workflow.add_edge("currency", "payment_terms")
    workflow.add_edge("payment_terms", "safety_net")

    # SAFETY_NET → [VENDOR_TRUST] → THRESHOLD → FINALIZE → END
    if stages.vendor_trust:
        workflow.add_node("vendor_trust", VendorTrustNode(settings))
        workflow.add_edge("safety_net", "vendor_trust")
        workflow.add_edge("vendor_trust", "threshold")
    else:
        workflow.add_edge("safety_net", "threshold")

    workflow.add_edge("threshold", "finalize")
    workflow.add_edge("finalize", END)

    logger.info("Workflow graph built successfully")

    return workflow


class InvoiceProcessor:
    """
    Entry point of the decision engine: runs one invoice through the pipeline
    """

    def __init__(
        self,
        memory_store: MemoryStore,
        catalog: ReferenceCatalog,
        settings: Optional[PipelineSettings] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize processor

        Args:
            memory_store: Learned memory store
            catalog: Purchase order / delivery note lookup
            settings: Pipeline settings, loaded from pipeline.yaml if omitted
            clock: Callable returning the current UTC time (audit timestamps)
        """
        self.memory_store = memory_store
        self.catalog = catalog
        self.settings = settings or load_settings()
        self.clock = clock
        self.workflow = create_workflow(self.settings, memory_store, catalog).compile()

    def process(
        self,
        invoice: InvoiceInput,
        history: Optional[Iterable[InvoiceInput]] = None
    ) -> ProcessingResult:
        """
        Review one invoice

        Args:
            invoice: Invoice model or camelCase dict
            history: Previously seen invoices, in any order

        Returns:
            ProcessingResult with the decision and its audit trail

        Raises:
            ValidationError: If the invoice itself is malformed
            MemoryStoreError: If the memory store is unusable
        """
        invoice = self._coerce_invoice(invoice)
        state = state_manager.create_initial_state(
            invoice,
            self._coerce_history(history),
            clock=self.clock
        )

        logger.info(f"Reviewing invoice {invoice.invoice_id} from {invoice.vendor}")
        final_state = self.workflow.invoke(state)

        summary = state_manager.get_state_summary(final_state)
        logger.info(f"Review finished: {summary}")

        return self._build_result(final_state)

    def process_by_id(
        self,
        invoice_id: str,
        invoices: Iterable[InvoiceInput],
        history: Optional[Iterable[InvoiceInput]] = None
    ) -> ProcessingResult:
        """
        Look up an invoice by identifier and review it

        Raises:
            InvoiceNotFoundError: If no invoice carries invoice_id
        """
        for candidate in invoices:
            candidate_id = candidate.get('invoiceId') if isinstance(candidate, dict) else candidate.invoice_id
            if candidate_id == invoice_id:
                return self.process(candidate, history)

        raise InvoiceNotFoundError(invoice_id)

    @staticmethod
    def _coerce_invoice(invoice: InvoiceInput) -> Invoice:
        if isinstance(invoice, Invoice):
            return invoice
        try:
            return Invoice.model_validate(invoice)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Malformed invoice: {e.error_count()} validation errors",
                details={'errors': e.errors(include_url=False)}
            ) from e

    @staticmethod
    def _coerce_history(history: Optional[Iterable[InvoiceInput]]) -> List[Invoice]:
        coerced = []
        for index, entry in enumerate(history or []):
            if isinstance(entry, Invoice):
                coerced.append(entry)
                continue
            try:
                coerced.append(Invoice.model_validate(entry))
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed history entry #{index}: {e.error_count()} errors")
        return coerced

    @staticmethod
    def _build_result(state: ProcessingState) -> ProcessingResult:
        """Assemble the public result from the final pipeline state"""
        return ProcessingResult(
            invoice_id=state['invoice'].invoice_id,
            normalized_invoice=state['normalized_invoice'],
            proposed_corrections=list(state['proposed_corrections']),
            requires_human_review=state['requires_human_review'],
            is_duplicate=state['is_duplicate'],
            reasoning=state['reasoning'],
            confidence_score=state['confidence_score'],
            memory_updates=list(state['memory_updates']),
            applied_memory_ids=list(state['applied_memory_ids']),
            audit_trail=state['audit_trail'].steps
        )
