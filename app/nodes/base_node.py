"""
Base node class for the review pipeline stages
"""
from typing import Optional
from abc import ABC, abstractmethod
from datetime import datetime

from core.config.config import PipelineSettings
from core.memory.memory_store import MemoryStore
from core.models.memory import MemoryType, MemoryValue
from core.models.state import ProcessingState
from core.utils.error_handler import error_handler
from core.utils.logging_config import get_logger
from core.utils.state_manager import state_manager

logger = get_logger(__name__)


class BaseNode(ABC):
    """
    Abstract base class for all pipeline nodes

    Each node should:
    1. Inherit from this class
    2. Implement the execute() method
    3. Update the state and return it
    """

    def __init__(
        self,
        name: str,
        settings: PipelineSettings,
        mode: str = "deterministic"
    ):
        """
        Initialize base node

        Args:
            name: Node name (e.g., "DUPLICATE_CHECK", "RECALL")
            settings: Pipeline settings
            mode: Node mode ("deterministic" or "learning")
        """
        self.name = name
        self.settings = settings
        self.mode = mode

    def __call__(self, state: ProcessingState) -> ProcessingState:
        """
        Make the node callable for LangGraph

        Args:
            state: Current pipeline state

        Returns:
            Updated pipeline state
        """
        return self.run(state)

    def run(self, state: ProcessingState) -> ProcessingState:
        """
        Run the node with error handling

        A recoverable failure inside a stage never produces an
        auto-accept: the invoice is escalated to human review and the
        remaining stages still run. Unrecoverable errors propagate.

        Args:
            state: Current pipeline state

        Returns:
            Updated pipeline state
        """
        logger.debug(f"Starting node: {self.name}")
        start_time = datetime.utcnow()

        try:
            updated_state = self.execute(state)
            updated_state['updated_at'] = updated_state['audit_trail'].now().isoformat()

            duration_ms = (datetime.utcnow() - start_time).total_seconds() * 1000
            logger.debug(f"Completed node: {self.name} ({duration_ms:.1f} ms)")
            return updated_state

        except Exception as e:
            error_info = error_handler.handle_error(error=e, node=self.name, state=state)

            if not error_info.get('recoverable', True):
                raise

            logger.error(f"Failed node: {self.name} - {e}")
            state['errors'].append(error_info)
            state_manager.force_review(state, f"Stage {self.name} failed ({type(e).__name__}).")
            state['audit_trail'].record('decide', f"Escalated: stage {self.name} failed with {type(e).__name__}.")
            return state

    @abstractmethod
    def execute(self, state: ProcessingState) -> ProcessingState:
        """
        Execute the node logic (must be implemented by subclasses)

        Args:
            state: Current pipeline state

        Returns:
            Updated pipeline state
        """
        pass

    def validate_required_fields(
        self,
        state: ProcessingState,
        required_fields: list
    ):
        """
        Validate that required fields are present in state

        Args:
            state: Current pipeline state
            required_fields: List of required field names

        Raises:
            ValueError: If required fields are missing
        """
        missing_fields = [
            field for field in required_fields
            if field not in state or state[field] is None
        ]

        if missing_fields:
            raise ValueError(
                f"Missing required fields in {self.name}: {missing_fields}"
            )


class DeterministicNode(BaseNode):
    """
    Base class for deterministic nodes
    Deterministic nodes always produce the same output for the same input
    and never write to the memory store
    """

    def __init__(self, name: str, settings: PipelineSettings):
        super().__init__(name=name, settings=settings, mode="deterministic")


class LearningNode(BaseNode):
    """
    Base class for nodes that may promote a heuristic finding to a
    learned memory for future invoices
    """

    def __init__(self, name: str, settings: PipelineSettings, memory_store: MemoryStore):
        super().__init__(name=name, settings=settings, mode="learning")
        self.memory_store = memory_store

    def remember(
        self,
        state: ProcessingState,
        memory_type: MemoryType,
        key: str,
        value: MemoryValue,
        notice: str
    ) -> bool:
        """
        Persist a heuristic finding unless a rule for it already exists

        Args:
            state: Current pipeline state
            memory_type: Memory type of the new rule
            key: Rule key
            value: Rule payload
            notice: Informational memory update shown in the result

        Returns:
            True if a new memory was created
        """
        vendor = state['invoice'].vendor
        if any(m.memory_type == memory_type and m.key == key for m in state['memories']):
            return False

        entry, created = self.memory_store.learn_if_absent(vendor, memory_type, key, value)
        if created:
            state['memory_updates'].append(notice)
            state['audit_trail'].record('learn', f"Recorded {memory_type.value} '{key}' -> {value} for {vendor}.")
            logger.info(f"Learned {memory_type.value} '{key}' for {vendor} (id {entry.id})")
        return created
