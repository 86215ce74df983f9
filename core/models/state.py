"""
State schema for the invoice review pipeline
"""
from typing import TypedDict, List, Dict, Any

from core.models.invoice import Invoice
from core.models.memory import MemoryEntry
from core.utils.audit_trail import AuditTrail


class ProcessingState(TypedDict, total=False):
    """
    Complete state schema for one pipeline run.
    Each node updates specific fields in this state.
    """

    # Inputs
    invoice: Invoice
    history: List[Invoice]

    # Working copy with corrections applied
    normalized_invoice: Invoice

    # RECALL node outputs (snapshot used by every later stage)
    memories: List[MemoryEntry]
    applied_memory_ids: List[str]
    applied_rule_kinds: List[str]

    # Decision accumulators
    confidence_score: float
    requires_human_review: bool
    is_duplicate: bool
    reasoning: str
    proposed_corrections: List[str]
    memory_updates: List[str]

    # Audit
    audit_trail: AuditTrail
    errors: List[Dict[str, Any]]

    # Metadata
    status: str
    created_at: str
    updated_at: str
