"""
Shared fixtures for the invoice review engine tests
"""
from datetime import datetime, timedelta

import pytest

from app.review.feedback_service import FeedbackService
from app.workflow.invoice_workflow import InvoiceProcessor
from core.config.config import load_settings
from core.memory.memory_store import MemoryStore
from core.models.invoice import Invoice
from integrations.catalog.reference_catalog import ReferenceCatalog

PURCHASE_ORDERS = [
    {
        "poNumber": "PO-A-050",
        "vendor": "Supplier GmbH",
        "date": "02.01.2024",
        "lineItems": [
            {"sku": "WIDGET-001", "description": "Widget", "qty": 100, "unitPrice": 25.0}
        ],
    },
    {
        "poNumber": "PO-A-051",
        "vendor": "Supplier GmbH",
        "date": "05.01.2024",
        "lineItems": [
            {"sku": "WIDGET-002", "description": "Widget Pro", "qty": 50, "unitPrice": 40.0}
        ],
    },
    {
        "poNumber": "PO-B-100",
        "vendor": "Parts AG",
        "date": "03.01.2024",
        "lineItems": [
            {"sku": "BOLT-01", "description": "Bolts M8", "qty": 200, "unitPrice": 1.5}
        ],
    },
]

DELIVERY_NOTES = [
    {
        "dnNumber": "DN-B-100",
        "poNumber": "PO-B-100",
        "vendor": "Parts AG",
        "date": "08.01.2024",
        "lineItems": [
            {"sku": "BOLT-01", "qtyDelivered": 180}
        ],
    },
]


class FakeClock:
    """Controllable UTC clock"""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 15, 9, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, days=0, hours=0):
        self.now = self.now + timedelta(days=days, hours=hours)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(tmp_path, clock):
    return MemoryStore(database_url=f"sqlite:///{tmp_path / 'memory.db'}", clock=clock)


@pytest.fixture
def catalog():
    return ReferenceCatalog(purchase_orders=PURCHASE_ORDERS, delivery_notes=DELIVERY_NOTES)


@pytest.fixture
def settings():
    return load_settings()


@pytest.fixture
def processor(memory_store, catalog, settings, clock):
    return InvoiceProcessor(memory_store, catalog, settings=settings, clock=clock)


@pytest.fixture
def feedback(memory_store):
    return FeedbackService(memory_store)


@pytest.fixture
def make_invoice():
    """Build an Invoice with sensible defaults; keyword arguments override fields"""

    def _make(
        invoice_id="INV-A-001",
        vendor="Supplier GmbH",
        raw_text="Rechnung",
        confidence=0.85,
        line_items=None,
        **fields
    ):
        payload = {
            "invoiceNumber": "2024-001",
            "invoiceDate": "10.01.2024",
            "currency": "EUR",
            "netTotal": 2500.0,
            "taxRate": 0.19,
            "taxTotal": 475.0,
            "grossTotal": 2975.0,
            "lineItems": line_items if line_items is not None else [
                {"sku": "WIDGET-001", "description": "Widget", "qty": 100, "unitPrice": 25.0}
            ],
        }
        payload.update(fields)
        return Invoice.model_validate({
            "invoiceId": invoice_id,
            "vendor": vendor,
            "fields": payload,
            "confidence": confidence,
            "rawText": raw_text,
        })

    return _make
