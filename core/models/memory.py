"""
Learned memory entries and their rule kinds
"""
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import Field

from core.models.invoice import CamelModel

PO_MATCH_PREFIX = 'po-match:'
SKU_PREFIX = 'SKU-'

SERVICE_DATE_FIELD = 'serviceDate'
VAT_INCLUSIVE_KEY = 'vat-inclusive'
QTY_MISMATCH_KEY = 'qty-mismatch-adjust'
DN_PRIORITY_VALUE = 'dn-priority'
DEFAULT_CURRENCY_KEY = 'default-currency'
PAYMENT_TERMS_KEY = 'payment-terms'
REJECTION_RATE_KEY = 'rejection-rate'


class MemoryType(str, Enum):
    VENDOR_PREFERENCE = 'vendor-preference'
    CORRECTION_PATTERN = 'correction-pattern'
    FIELD_MAPPING = 'field-mapping'
    RESOLUTION_HISTORY = 'resolution-history'


# Trust signals survive reset()
RETAINED_ON_RESET = (MemoryType.VENDOR_PREFERENCE, MemoryType.RESOLUTION_HISTORY)


class RuleKind(str, Enum):
    """What a memory entry does when applied, derived from its type, key and value"""
    SERVICE_DATE_MAPPING = 'service-date-mapping'
    SKU_MAPPING = 'sku-mapping'
    VAT_INCLUSIVE = 'vat-inclusive'
    DN_PRIORITY = 'dn-priority'
    PO_MATCH = 'po-match'
    DEFAULT_CURRENCY = 'default-currency'
    PAYMENT_TERMS = 'payment-terms'
    REJECTION_RATE = 'rejection-rate'
    UNKNOWN = 'unknown'


MemoryValue = Union[bool, float, str]


def classify_rule(memory_type: MemoryType, key: str, value: MemoryValue) -> RuleKind:
    """
    Resolve the rule kind for a (type, key, value) signature

    Args:
        memory_type: Memory type of the entry
        key: Trigger key
        value: Stored value

    Returns:
        RuleKind, UNKNOWN when the signature is not one the pipeline acts on
    """
    if memory_type == MemoryType.FIELD_MAPPING and isinstance(value, str):
        if value == SERVICE_DATE_FIELD:
            return RuleKind.SERVICE_DATE_MAPPING
        if value.startswith(SKU_PREFIX):
            return RuleKind.SKU_MAPPING

    if memory_type == MemoryType.CORRECTION_PATTERN:
        if key == VAT_INCLUSIVE_KEY and value is True:
            return RuleKind.VAT_INCLUSIVE
        if key == QTY_MISMATCH_KEY and value == DN_PRIORITY_VALUE:
            return RuleKind.DN_PRIORITY

    if memory_type == MemoryType.VENDOR_PREFERENCE and isinstance(value, str):
        if key.startswith(PO_MATCH_PREFIX):
            return RuleKind.PO_MATCH
        if key == DEFAULT_CURRENCY_KEY:
            return RuleKind.DEFAULT_CURRENCY
        if key == PAYMENT_TERMS_KEY:
            return RuleKind.PAYMENT_TERMS

    if (memory_type == MemoryType.RESOLUTION_HISTORY and key == REJECTION_RATE_KEY
            and isinstance(value, float)):
        return RuleKind.REJECTION_RATE

    return RuleKind.UNKNOWN


class MemoryEntry(CamelModel):
    """A persisted, confidence-weighted learned rule"""
    id: str
    vendor_name: str
    memory_type: MemoryType
    key: str
    value: MemoryValue
    confidence: float = Field(ge=0.0, le=1.0)
    last_used: datetime
    usage_count: int = Field(default=1, ge=0)
    success_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)

    @property
    def rule_kind(self) -> RuleKind:
        return classify_rule(self.memory_type, self.key, self.value)

    @property
    def po_keyword(self) -> Optional[str]:
        """Line-description keyword of a po-match rule"""
        if self.rule_kind != RuleKind.PO_MATCH:
            return None
        return self.key[len(PO_MATCH_PREFIX):]
