"""
Memory Store - persistent, confidence-weighted learned rules per vendor
"""
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.config.config import config
from core.models.database import MemoryRecord, get_session_factory, init_db
from core.models.memory import MemoryEntry, MemoryType, MemoryValue, RETAINED_ON_RESET
from core.utils.error_handler import MemoryStoreError, RetryPolicy, ValidationError, with_retry
from core.utils.helpers import generate_memory_id
from core.utils.logging_config import get_logger

logger = get_logger(__name__)


class MemoryStore:
    """
    Repository of learned memory entries

    Every public operation is a single read-modify-write: an in-process
    lock serialises callers and each operation runs in one transaction,
    so concurrent learn/reinforce/reset calls never lose updates.

    Contents are validated when the store is opened. A store holding
    entries that do not validate is rejected outright with
    MemoryStoreError rather than partially trusted.
    """

    SEED_CONFIDENCE = 0.6
    SUCCESS_STEP = 0.15
    FAILURE_STEP = 0.3
    DECAY_RATE = 0.01
    DECAY_FLOOR = 0.1
    DECAY_GRACE_DAYS = 1.0

    def __init__(
        self,
        database_url: Optional[str] = None,
        min_recall_confidence: float = 0.2,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Open (and create if needed) the memory store

        Args:
            database_url: SQLAlchemy URL, defaults to MEMORY_DATABASE_URL
            min_recall_confidence: recall() only returns entries above this
            clock: Callable returning the current UTC time
        """
        self.database_url = database_url or config.MEMORY_DATABASE_URL
        self.min_recall_confidence = min_recall_confidence
        self._clock = clock or datetime.utcnow
        self._lock = threading.RLock()

        try:
            self._engine = init_db(self.database_url)
        except SQLAlchemyError as e:
            raise MemoryStoreError(f"Cannot open memory store at {self.database_url}: {e}") from e

        self._session_factory = get_session_factory(self._engine)

        entries = self._execute(self._load_all)
        logger.info(f"Memory store opened at {self.database_url} ({len(entries)} entries)")

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def recall(self, vendor_name: str, min_confidence: Optional[float] = None) -> List[MemoryEntry]:
        """
        Decay every stored entry, then return the vendor's usable entries

        Args:
            vendor_name: Vendor to recall memories for
            min_confidence: Recall threshold for this call, defaults to
                the store's min_recall_confidence

        Returns:
            Entries for exactly this vendor with confidence above the
            recall threshold, in creation order
        """
        if min_confidence is None:
            min_confidence = self.min_recall_confidence
        return self._execute(self._recall, vendor_name, min_confidence)

    def learn(
        self,
        vendor_name: str,
        memory_type: Union[MemoryType, str],
        key: str,
        value: MemoryValue,
        was_successful: bool = True
    ) -> MemoryEntry:
        """
        Create or reinforce the entry for (vendor, type, key)

        Args:
            vendor_name: Vendor the rule belongs to
            memory_type: One of the MemoryType values
            key: Trigger key
            value: Rule payload (bool, number or string)
            was_successful: Whether this observation confirms the rule

        Returns:
            The created or updated entry
        """
        memory_type = self._coerce_type(memory_type)
        self._check_value(value)
        return self._execute(self._learn, vendor_name, memory_type, key, value, was_successful)

    def learn_if_absent(
        self,
        vendor_name: str,
        memory_type: Union[MemoryType, str],
        key: str,
        value: MemoryValue
    ) -> Tuple[MemoryEntry, bool]:
        """
        Create the entry only if (vendor, type, key) is not stored yet

        Returns:
            Tuple of (entry, created)
        """
        memory_type = self._coerce_type(memory_type)
        self._check_value(value)
        return self._execute(self._learn_if_absent, vendor_name, memory_type, key, value)

    def learn_computed(
        self,
        vendor_name: str,
        memory_type: Union[MemoryType, str],
        key: str,
        compute: Callable[[Optional[MemoryValue]], MemoryValue],
        was_successful: bool = True
    ) -> MemoryEntry:
        """
        Like learn(), but the new value is derived from the stored one

        The read and the write happen in the same transaction, so two
        concurrent callers never compute from the same old value.

        Args:
            vendor_name: Vendor the rule belongs to
            memory_type: One of the MemoryType values
            key: Trigger key
            compute: Maps the current value (None if absent) to the new value
            was_successful: Whether this observation confirms the rule

        Returns:
            The created or updated entry
        """
        memory_type = self._coerce_type(memory_type)
        return self._execute(self._learn_computed, vendor_name, memory_type, key, compute, was_successful)

    def reinforce(self, ids: Iterable[str], was_successful: bool) -> List[MemoryEntry]:
        """
        Apply human feedback to every entry whose id is listed

        Args:
            ids: Memory ids, typically a result's applied_memory_ids
            was_successful: True on approval, False on rejection

        Returns:
            Updated entries; unknown ids are ignored
        """
        return self._execute(self._reinforce, list(dict.fromkeys(ids)), was_successful)

    def reset(self) -> int:
        """
        Forget per-document corrections, keep the vendor trust signals

        Field-mapping and correction-pattern entries are deleted;
        vendor-preference and resolution-history entries survive.

        Returns:
            Number of deleted entries
        """
        return self._execute(self._reset)

    def all_entries(self) -> List[MemoryEntry]:
        """Snapshot of every stored entry, without applying decay"""
        return self._execute(self._load_all)

    def get(self, entry_id: str) -> Optional[MemoryEntry]:
        """Look up one entry by id"""
        return self._execute(self._get, entry_id)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _execute(self, operation: Callable, *args):
        try:
            return self._execute_with_retry(operation, *args)
        except SQLAlchemyError as e:
            raise MemoryStoreError(f"Memory store operation {operation.__name__} failed: {e}") from e

    @with_retry(
        retry_policy=RetryPolicy(max_retries=2, backoff_seconds=0.05),
        exceptions=(OperationalError,)
    )
    def _execute_with_retry(self, operation: Callable, *args):
        with self._transaction() as session:
            return operation(session, *args)

    @contextmanager
    def _transaction(self):
        with self._lock:
            session = self._session_factory()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def _recall(self, session: Session, vendor_name: str, min_confidence: float) -> List[MemoryEntry]:
        now = self._clock()
        records = session.query(MemoryRecord).order_by(MemoryRecord.pk).all()

        decayed = 0
        for record in records:
            if self._decay(record, now):
                decayed += 1

        if decayed:
            logger.info(f"[Memory] Decayed {decayed} stale entries")

        return [
            self._to_entry(record)
            for record in records
            if record.vendor_name == vendor_name and record.confidence > min_confidence
        ]

    def _learn(
        self,
        session: Session,
        vendor_name: str,
        memory_type: MemoryType,
        key: str,
        value: MemoryValue,
        was_successful: bool
    ) -> MemoryEntry:
        record = self._find(session, vendor_name, memory_type, key)

        if record is not None:
            self._apply_outcome(record, was_successful)
            record.value = value
            logger.info(
                f"[Memory] Updated pattern for {vendor_name}: {key} -> {value} "
                f"(Confidence: {record.confidence:.2f})"
            )
        else:
            record = self._create(session, vendor_name, memory_type, key, value, was_successful)

        session.flush()
        return self._to_entry(record)

    def _learn_if_absent(
        self,
        session: Session,
        vendor_name: str,
        memory_type: MemoryType,
        key: str,
        value: MemoryValue
    ) -> Tuple[MemoryEntry, bool]:
        record = self._find(session, vendor_name, memory_type, key)
        if record is not None:
            return self._to_entry(record), False

        record = self._create(session, vendor_name, memory_type, key, value, True)
        session.flush()
        return self._to_entry(record), True

    def _learn_computed(
        self,
        session: Session,
        vendor_name: str,
        memory_type: MemoryType,
        key: str,
        compute: Callable[[Optional[MemoryValue]], MemoryValue],
        was_successful: bool
    ) -> MemoryEntry:
        record = self._find(session, vendor_name, memory_type, key)
        value = compute(record.value if record is not None else None)
        self._check_value(value)
        return self._learn(session, vendor_name, memory_type, key, value, was_successful)

    def _reinforce(self, session: Session, ids: List[str], was_successful: bool) -> List[MemoryEntry]:
        if not ids:
            return []

        records = session.query(MemoryRecord).filter(MemoryRecord.id.in_(ids)).all()
        for record in records:
            self._apply_outcome(record, was_successful)

        missing = set(ids) - {record.id for record in records}
        if missing:
            logger.warning(f"[Memory] Reinforce skipped unknown ids: {sorted(missing)}")

        logger.info(
            f"[Memory] Reinforced {len(records)} entries "
            f"({'success' if was_successful else 'failure'})"
        )
        return [self._to_entry(record) for record in records]

    def _reset(self, session: Session) -> int:
        retained = [memory_type.value for memory_type in RETAINED_ON_RESET]
        removed = session.query(MemoryRecord).filter(
            MemoryRecord.memory_type.notin_(retained)
        ).delete(synchronize_session=False)
        logger.info(f"[Memory] Reset removed {removed} entries, kept vendor trust signals")
        return removed

    def _load_all(self, session: Session) -> List[MemoryEntry]:
        records = session.query(MemoryRecord).order_by(MemoryRecord.pk).all()
        return [self._to_entry(record) for record in records]

    def _get(self, session: Session, entry_id: str) -> Optional[MemoryEntry]:
        record = session.query(MemoryRecord).filter(MemoryRecord.id == entry_id).one_or_none()
        return self._to_entry(record) if record is not None else None

    # ------------------------------------------------------------------
    # Record helpers
    # ------------------------------------------------------------------

    def _find(
        self,
        session: Session,
        vendor_name: str,
        memory_type: MemoryType,
        key: str
    ) -> Optional[MemoryRecord]:
        return session.query(MemoryRecord).filter(
            MemoryRecord.vendor_name == vendor_name,
            MemoryRecord.memory_type == memory_type.value,
            MemoryRecord.key == key
        ).one_or_none()

    def _create(
        self,
        session: Session,
        vendor_name: str,
        memory_type: MemoryType,
        key: str,
        value: MemoryValue,
        was_successful: bool
    ) -> MemoryRecord:
        record = MemoryRecord(
            id=generate_memory_id(),
            vendor_name=vendor_name,
            memory_type=memory_type.value,
            key=key,
            value=value,
            confidence=self.SEED_CONFIDENCE,
            last_used=self._clock(),
            usage_count=1,
            success_count=1 if was_successful else 0,
            failure_count=0 if was_successful else 1
        )
        session.add(record)
        logger.info(f"[Memory] Created new pattern for {vendor_name}: {key} -> {value}")
        return record

    def _apply_outcome(self, record: MemoryRecord, was_successful: bool):
        if was_successful:
            record.confidence = min(record.confidence + self.SUCCESS_STEP, 1.0)
            record.success_count += 1
        else:
            record.confidence = max(record.confidence - self.FAILURE_STEP, 0.0)
            record.failure_count += 1
        record.usage_count += 1
        record.last_used = self._clock()

    def _decay(self, record: MemoryRecord, now: datetime) -> bool:
        days_since_use = (now - record.last_used).total_seconds() / 86400.0
        if days_since_use <= self.DECAY_GRACE_DAYS:
            return False

        decayed = max(record.confidence - days_since_use * self.DECAY_RATE, self.DECAY_FLOOR)
        # Entries already under the floor (e.g. after rejections) are left alone
        if decayed >= record.confidence:
            return False

        record.confidence = decayed
        return True

    def _to_entry(self, record: MemoryRecord) -> MemoryEntry:
        try:
            return MemoryEntry.model_validate({
                'id': record.id,
                'vendor_name': record.vendor_name,
                'memory_type': record.memory_type,
                'key': record.key,
                'value': record.value,
                'confidence': record.confidence,
                'last_used': record.last_used,
                'usage_count': record.usage_count,
                'success_count': record.success_count,
                'failure_count': record.failure_count,
            })
        except PydanticValidationError as e:
            raise MemoryStoreError(
                f"Corrupt memory entry {record.id!r}: {e}",
                details={'entry_id': record.id}
            ) from e

    @staticmethod
    def _coerce_type(memory_type: Union[MemoryType, str]) -> MemoryType:
        try:
            return MemoryType(memory_type)
        except ValueError:
            raise ValidationError(
                f"Unknown memory type: {memory_type}",
                node="MEMORY_STORE",
                details={'memory_type': str(memory_type)}
            )

    @staticmethod
    def _check_value(value: MemoryValue):
        if not isinstance(value, (bool, int, float, str)):
            raise ValidationError(
                f"Memory value must be a boolean, number or string, got {type(value).__name__}",
                node="MEMORY_STORE"
            )
