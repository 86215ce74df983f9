"""
Invoice and reference document models
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model reading and writing the camelCase JSON contract"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LineItem(CamelModel):
    """A single invoice line"""
    sku: Optional[str] = None
    description: str = ''
    qty: float = Field(default=0.0, ge=0)
    unit_price: float = Field(default=0.0, ge=0)


class InvoiceFields(CamelModel):
    """Structured fields extracted upstream"""
    invoice_number: str
    invoice_date: str
    service_date: Optional[str] = None
    currency: Optional[str] = None
    po_number: Optional[str] = None
    net_total: float = 0.0
    tax_rate: float = 0.0
    tax_total: float = 0.0
    gross_total: float = 0.0
    line_items: List[LineItem] = Field(default_factory=list)


class Invoice(CamelModel):
    """Invoice as submitted for review; never mutated by the engine"""
    invoice_id: str
    vendor: str
    fields: InvoiceFields
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    raw_text: str = ''


class POLineItem(CamelModel):
    """A single line item in a Purchase Order"""
    sku: Optional[str] = None
    description: Optional[str] = None
    qty: float = Field(ge=0)
    unit_price: float = Field(ge=0)


class PurchaseOrder(CamelModel):
    """A Purchase Order record"""
    po_number: str
    vendor: str
    date: Optional[str] = None
    line_items: List[POLineItem] = Field(default_factory=list)


class DNLineItem(CamelModel):
    """A single delivered line on a Delivery Note"""
    sku: Optional[str] = None
    qty_delivered: float = Field(ge=0)


class DeliveryNote(CamelModel):
    """A Delivery Note record"""
    dn_number: str
    po_number: str
    vendor: str
    date: Optional[str] = None
    line_items: List[DNLineItem] = Field(default_factory=list)
