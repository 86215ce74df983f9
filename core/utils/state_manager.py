"""
State management utilities for pipeline state operations
"""
from typing import Dict, Any, Iterable, Optional, Callable
from datetime import datetime

from core.models.invoice import Invoice
from core.models.state import ProcessingState
from core.utils.audit_trail import AuditTrail
from core.utils.helpers import clamp

INITIAL_REASONING = "Standard processing started."
NO_APPLICABLE_MEMORY = "Found memories but none were applicable to this specific invoice."


class StateManager:
    """
    Utility class for managing pipeline state
    """

    @staticmethod
    def create_initial_state(
        invoice: Invoice,
        history: Optional[Iterable[Invoice]] = None,
        clock: Optional[Callable[[], datetime]] = None
    ) -> ProcessingState:
        """
        Create initial pipeline state

        Args:
            invoice: Invoice under review (left untouched)
            history: Previously seen invoices
            clock: Callable returning the current UTC time

        Returns:
            Initial ProcessingState with a deep-copied working invoice
        """
        now = (clock or datetime.utcnow)().isoformat()
        return {
            'invoice': invoice,
            'history': list(history or []),
            'normalized_invoice': invoice.model_copy(deep=True),
            'memories': [],
            'applied_memory_ids': [],
            'applied_rule_kinds': [],
            'confidence_score': clamp(invoice.confidence),
            'requires_human_review': False,
            'is_duplicate': False,
            'reasoning': INITIAL_REASONING,
            'proposed_corrections': [],
            'memory_updates': [],
            'audit_trail': AuditTrail(clock=clock),
            'errors': [],
            'status': 'PENDING',
            'created_at': now,
            'updated_at': now
        }

    @staticmethod
    def adjust_confidence(state: ProcessingState, delta: float) -> float:
        """
        Add delta to the running confidence, clamped to [0, 1]

        Returns:
            New confidence score
        """
        state['confidence_score'] = clamp(state['confidence_score'] + delta)
        return state['confidence_score']

    @staticmethod
    def scale_confidence(state: ProcessingState, factor: float) -> float:
        """Multiply the running confidence, clamped to [0, 1]"""
        state['confidence_score'] = clamp(state['confidence_score'] * factor)
        return state['confidence_score']

    @staticmethod
    def append_reasoning(state: ProcessingState, sentence: str, opener: Optional[str] = None):
        """
        Extend the reasoning narrative

        If nothing was applicable so far and an opener is given, the
        placeholder narrative is replaced by the opener first.
        """
        if opener and state['reasoning'] == NO_APPLICABLE_MEMORY:
            state['reasoning'] = opener
        state['reasoning'] = f"{state['reasoning']} {sentence}".strip()

    @staticmethod
    def force_review(state: ProcessingState, reason: Optional[str] = None, replace_reasoning: bool = False):
        """
        Flag the invoice for human review

        Args:
            state: Current pipeline state
            reason: Sentence describing why
            replace_reasoning: Overwrite the narrative instead of appending
        """
        state['requires_human_review'] = True
        if reason:
            if replace_reasoning:
                state['reasoning'] = reason
            else:
                StateManager.append_reasoning(state, reason)

    @staticmethod
    def mark_applied(state: ProcessingState, memory_id: str, rule_kind: str):
        """Record that a learned memory contributed to this result"""
        if memory_id not in state['applied_memory_ids']:
            state['applied_memory_ids'].append(memory_id)
        if rule_kind not in state['applied_rule_kinds']:
            state['applied_rule_kinds'].append(rule_kind)

    @staticmethod
    def get_state_summary(state: ProcessingState) -> Dict[str, Any]:
        """
        Get a summary of the current state

        Args:
            state: Current state

        Returns:
            Summary dictionary
        """
        invoice = state.get('invoice')
        return {
            'invoice_id': invoice.invoice_id if invoice is not None else None,
            'vendor': invoice.vendor if invoice is not None else None,
            'status': state.get('status'),
            'confidence_score': state.get('confidence_score'),
            'requires_human_review': state.get('requires_human_review'),
            'is_duplicate': state.get('is_duplicate'),
            'corrections': len(state.get('proposed_corrections', [])),
            'applied_memories': len(state.get('applied_memory_ids', [])),
            'audit_steps': len(state['audit_trail']) if 'audit_trail' in state else 0,
            'created_at': state.get('created_at'),
            'updated_at': state.get('updated_at')
        }


# Create singleton instance
state_manager = StateManager()
