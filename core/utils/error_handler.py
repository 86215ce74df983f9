"""
Error types, retry decorator and stage failure bookkeeping for the review pipeline
"""
import time
from collections import Counter, deque
from typing import Callable, Any, Optional, Deque, Dict
from functools import wraps
from datetime import datetime

from core.utils.logging_config import get_logger

logger = get_logger(__name__)


class RetryPolicy:
    """How often and how patiently a transient failure is retried"""

    def __init__(
        self,
        max_retries: int = 3,
        backoff_seconds: float = 0.1,
        exponential: bool = True,
        max_backoff_seconds: float = 2.0
    ):
        """
        Args:
            max_retries: Retries after the first attempt
            backoff_seconds: Wait before the first retry
            exponential: Double the wait on every further retry
            max_backoff_seconds: Upper bound for a single wait
        """
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.exponential = exponential
        self.max_backoff_seconds = max_backoff_seconds

    @property
    def attempts(self) -> int:
        return self.max_retries + 1

    def get_backoff_time(self, attempt: int) -> float:
        """Wait in seconds after the given 0-indexed failed attempt"""
        wait = self.backoff_seconds * (2 ** attempt) if self.exponential else self.backoff_seconds
        return min(wait, self.max_backoff_seconds)


class InvoiceProcessingError(Exception):
    """
    Base error of the review engine

    Recoverable errors escalate the current invoice to human review.
    Unrecoverable ones abort the call that raised them.
    """

    def __init__(
        self,
        message: str,
        node: Optional[str] = None,
        recoverable: bool = True,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.node = node
        self.recoverable = recoverable
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error_type': type(self).__name__,
            'error_message': self.message,
            'node': self.node,
            'recoverable': self.recoverable,
            'details': self.details,
        }


class InvoiceNotFoundError(InvoiceProcessingError):
    """Unknown invoice identifier"""

    def __init__(self, invoice_id: str):
        super().__init__(
            f"Invoice not found: {invoice_id}",
            recoverable=False,
            details={'invoice_id': invoice_id}
        )
        self.invoice_id = invoice_id


class ValidationError(InvoiceProcessingError):
    """Invalid input or feedback"""
    pass


class MatchingError(InvoiceProcessingError):
    """Cross-document matching failed"""
    pass


class MemoryStoreError(InvoiceProcessingError):
    """Memory store could not be read or written"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, node="MEMORY_STORE", recoverable=False, details=details)


def with_retry(
    retry_policy: Optional[RetryPolicy] = None,
    exceptions: tuple = (Exception,),
    on_retry: Optional[Callable] = None
):
    """
    Retry the decorated call on the given exception types

    Args:
        retry_policy: Attempts and backoff, defaults to RetryPolicy()
        exceptions: Exception types worth another attempt
        on_retry: Called as on_retry(attempt, error) before each wait

    Usage:
        @with_retry(retry_policy=RetryPolicy(max_retries=2), exceptions=(OperationalError,))
        def write(session):
            ...
    """
    if retry_policy is None:
        retry_policy = RetryPolicy()

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            for attempt in range(retry_policy.attempts):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt + 1 >= retry_policy.attempts:
                        logger.error(f"{func.__name__} gave up after {retry_policy.attempts} attempts: {e}")
                        raise

                    backoff = retry_policy.get_backoff_time(attempt)
                    logger.warning(
                        f"{func.__name__} attempt {attempt + 1}/{retry_policy.attempts} failed: {e}. "
                        f"Retrying in {backoff:.2f}s"
                    )
                    if on_retry:
                        on_retry(attempt, e)
                    time.sleep(backoff)

        return wrapper
    return decorator


class ErrorHandler:
    """
    Records every stage failure and raises an ops alert for the unrecoverable ones

    Counters cover every failure since start-up; error_log keeps only the
    most recent max_log_size descriptions.
    """

    def __init__(self, notify_ops_team: bool = True, max_log_size: int = 500):
        self.notify_ops_team = notify_ops_team
        self.error_log: Deque[Dict[str, Any]] = deque(maxlen=max_log_size)
        self.counts: Counter = Counter()
        self.counts_by_node: Counter = Counter()

    def handle_error(
        self,
        error: Exception,
        node: str,
        state: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Log a stage failure and describe it

        Args:
            error: The exception raised by the stage
            node: Stage name
            state: Pipeline state at the time of failure

        Returns:
            Error description; 'recoverable' tells the caller whether to escalate or abort
        """
        if isinstance(error, InvoiceProcessingError):
            error_info = error.to_dict()
        else:
            error_info = {
                'error_type': type(error).__name__,
                'error_message': str(error),
                'recoverable': True,
            }
        error_info['node'] = node
        error_info['invoice_id'] = self._invoice_id(state)
        error_info['timestamp'] = datetime.utcnow().isoformat()

        self.error_log.append(error_info)
        self.counts['recoverable' if error_info['recoverable'] else 'unrecoverable'] += 1
        self.counts_by_node[node] += 1
        logger.error(f"Error in {node} for invoice {error_info['invoice_id']}: {error}")

        if not error_info['recoverable']:
            error_info['action'] = 'abort'
            logger.critical(f"Unrecoverable error in {node}: {error}")
            if self.notify_ops_team:
                self._notify_ops_team(error_info)

        return error_info

    @staticmethod
    def _invoice_id(state: Optional[Dict[str, Any]]) -> str:
        invoice = state.get('invoice') if state else None
        return invoice.invoice_id if invoice is not None else 'unknown'

    def _notify_ops_team(self, error_info: Dict[str, Any]):
        """Raise an ops alert through the critical log channel"""
        logger.critical(
            f"OPS TEAM NOTIFICATION: Unrecoverable error in {error_info['node']}\n"
            f"Error: {error_info['error_message']}\n"
            f"Invoice ID: {error_info['invoice_id']}\n"
            f"Timestamp: {error_info['timestamp']}"
        )

    def get_error_summary(self) -> Dict[str, Any]:
        """Counts of recorded failures, overall and per stage, plus the recent log"""
        return {
            'total_errors': sum(self.counts.values()),
            'recoverable': self.counts['recoverable'],
            'unrecoverable': self.counts['unrecoverable'],
            'by_node': dict(self.counts_by_node),
            'errors': list(self.error_log)
        }


error_handler = ErrorHandler()
