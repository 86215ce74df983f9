"""
Feedback Service - human teaching and review resolutions flowing back into memory
"""
from typing import Any, Dict, Iterable, Optional, Union

from core.memory.memory_store import MemoryStore
from core.models.memory import REJECTION_RATE_KEY, MemoryEntry, MemoryType, MemoryValue
from core.models.result import ProcessingResult
from core.utils.error_handler import ValidationError
from core.utils.logging_config import get_logger

logger = get_logger(__name__)

VALID_DECISIONS = ('ACCEPT', 'REJECT')


def next_rejection_rate(rate: Optional[float], approved: bool) -> float:
    """
    Move a vendor's rejection rate after one resolution

    Approvals shrink the rate by 10%; rejections close 20% of the gap to 1.

    Args:
        rate: Current rate, None for a vendor without history
        approved: Whether the reviewer approved the result

    Returns:
        New rejection rate
    """
    rate = float(rate) if isinstance(rate, (int, float)) and not isinstance(rate, bool) else 0.0
    if approved:
        return rate * 0.9
    return rate + (1 - rate) * 0.2


class FeedbackService:
    """
    Out-of-band feedback on the memory store

    - teach: a reviewer states a rule outright
    - resolve: a reviewer approved or rejected a result, which reinforces
      the memories it used and moves the vendor's rejection rate
    """

    def __init__(self, memory_store: MemoryStore):
        self.memory_store = memory_store

    def teach(
        self,
        vendor_name: str,
        memory_type: Union[MemoryType, str],
        key: str,
        value: MemoryValue,
        was_successful: bool = True
    ) -> MemoryEntry:
        """
        Record a correction taught by a human reviewer

        Args:
            vendor_name: Vendor the rule belongs to
            memory_type: Memory type (e.g. "field-mapping")
            key: Trigger key (e.g. "Leistungsdatum")
            value: Rule payload (e.g. "serviceDate")
            was_successful: False to record a contradicting observation

        Returns:
            The created or updated entry
        """
        if not vendor_name or not key:
            raise ValidationError("Vendor name and key are required to teach a rule", node="FEEDBACK")

        entry = self.memory_store.learn(vendor_name, memory_type, key, value, was_successful)
        logger.info(f"Taught {entry.memory_type.value} '{key}' for {vendor_name} (confidence {entry.confidence:.2f})")
        return entry

    def resolve(
        self,
        vendor_name: str,
        applied_memory_ids: Iterable[str],
        approved: bool
    ) -> Dict[str, Any]:
        """
        Apply a reviewer's resolution of a processed invoice

        Args:
            vendor_name: Vendor of the resolved invoice
            applied_memory_ids: Memory ids the result was built with
            approved: True if the reviewer approved the result

        Returns:
            Dictionary with reinforced entries and the new rejection rate
        """
        reinforced = self.memory_store.reinforce(applied_memory_ids, approved)

        history = self.memory_store.learn_computed(
            vendor_name,
            MemoryType.RESOLUTION_HISTORY,
            REJECTION_RATE_KEY,
            lambda rate: next_rejection_rate(rate, approved)
        )

        logger.info(
            f"Resolution for {vendor_name}: {'approved' if approved else 'rejected'}, "
            f"reinforced {len(reinforced)} memories, rejection rate now {history.value:.3f}"
        )

        return {
            'vendor_name': vendor_name,
            'approved': approved,
            'reinforced': reinforced,
            'rejection_rate': history.value,
            'resolutions': history.usage_count
        }

    def resolve_result(self, result: ProcessingResult, approved: bool) -> Dict[str, Any]:
        """
        Resolve a ProcessingResult directly

        Duplicates had learning disabled, so resolving one leaves memory untouched.
        """
        vendor_name = result.normalized_invoice.vendor
        if result.is_duplicate:
            logger.info(f"Resolution of duplicate {result.invoice_id} recorded without learning")
            return {
                'vendor_name': vendor_name,
                'approved': approved,
                'reinforced': [],
                'rejection_rate': None,
                'resolutions': None
            }
        return self.resolve(vendor_name, result.applied_memory_ids, approved)

    def submit_decision(self, result: ProcessingResult, decision: str) -> Dict[str, Any]:
        """
        Record a human review decision on a result

        Args:
            result: Result under review
            decision: "ACCEPT" or "REJECT"

        Returns:
            Resolution summary

        Raises:
            ValidationError: If decision is not ACCEPT or REJECT
        """
        if decision not in VALID_DECISIONS:
            raise ValidationError(
                "Decision must be 'ACCEPT' or 'REJECT'",
                node="FEEDBACK",
                details={'decision': decision}
            )

        logger.info(f"Human {decision} for invoice {result.invoice_id}")
        return self.resolve_result(result, approved=decision == 'ACCEPT')
