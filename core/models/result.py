"""
Processing output models
"""
from datetime import datetime
from typing import Any, Dict, List, Literal

from pydantic import Field

from core.models.invoice import CamelModel, Invoice

AUDIT_STEPS = ('recall', 'apply', 'decide', 'learn')


class AuditStep(CamelModel):
    step: Literal['recall', 'apply', 'decide', 'learn']
    timestamp: datetime
    details: str


class ProcessingResult(CamelModel):
    """Decision for one invoice, with everything a reviewer needs to audit it"""
    invoice_id: str
    normalized_invoice: Invoice
    proposed_corrections: List[str] = Field(default_factory=list)
    requires_human_review: bool
    is_duplicate: bool = False
    reasoning: str
    confidence_score: float = Field(ge=0.0, le=1.0)
    memory_updates: List[str] = Field(default_factory=list)
    applied_memory_ids: List[str] = Field(default_factory=list)
    audit_trail: List[AuditStep] = Field(default_factory=list)

    def to_json_dict(self) -> Dict[str, Any]:
        """Serialise to the camelCase JSON contract"""
        return self.model_dump(by_alias=True, mode='json')
