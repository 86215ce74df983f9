"""
Tests for teaching and review resolutions
"""
import pytest

from app.review.feedback_service import next_rejection_rate
from core.utils.error_handler import ValidationError


def _rejection_rate(memory_store, vendor):
    return next(m for m in memory_store.all_entries() if m.vendor_name == vendor and m.key == "rejection-rate")


class TestTeach:

    def test_teach_creates_memory(self, feedback):
        entry = feedback.teach("Supplier GmbH", "field-mapping", "Leistungsdatum", "serviceDate")

        assert entry.vendor_name == "Supplier GmbH"
        assert entry.confidence == pytest.approx(0.6)

    def test_teach_requires_vendor_and_key(self, feedback):
        with pytest.raises(ValidationError):
            feedback.teach("", "field-mapping", "Leistungsdatum", "serviceDate")


class TestRejectionRate:

    @pytest.mark.parametrize("rate, approved, expected", [
        (None, True, 0.0),
        (None, False, 0.2),
        (0.5, True, 0.45),
        (0.5, False, 0.6),
    ])
    def test_next_rejection_rate(self, rate, approved, expected):
        assert next_rejection_rate(rate, approved) == pytest.approx(expected)


class TestResolve:

    def test_approval_reinforces_and_records_history(self, feedback, memory_store):
        entry = feedback.teach("Supplier GmbH", "field-mapping", "Leistungsdatum", "serviceDate")

        outcome = feedback.resolve("Supplier GmbH", [entry.id], approved=True)

        assert memory_store.get(entry.id).confidence == pytest.approx(0.75)
        assert outcome['rejection_rate'] == pytest.approx(0.0)
        assert _rejection_rate(memory_store, "Supplier GmbH").value == pytest.approx(0.0)

    def test_repeated_rejections_compound(self, feedback, memory_store):
        for _ in range(4):
            outcome = feedback.resolve("Parts AG", [], approved=False)

        # 0 -> 0.2 -> 0.36 -> 0.488 -> 0.5904
        assert outcome['rejection_rate'] == pytest.approx(0.5904)
        assert outcome['resolutions'] == 4

    def test_rejection_lowers_memory_confidence(self, feedback, memory_store):
        entry = feedback.teach("Supplier GmbH", "field-mapping", "Leistungsdatum", "serviceDate")

        feedback.resolve("Supplier GmbH", [entry.id], approved=False)

        assert memory_store.get(entry.id).confidence == pytest.approx(0.3)

    def test_rejection_history_feeds_vendor_trust(self, feedback, processor, make_invoice):
        for _ in range(4):
            feedback.resolve("Acme Ltd", [], approved=False)
        invoice = make_invoice(vendor="Acme Ltd", confidence=0.95,
                               line_items=[{"description": "Consulting", "qty": 1, "unitPrice": 10.0}])

        result = processor.process(invoice)

        assert result.requires_human_review is True
        assert "Vendor has high historical rejection rate." in result.reasoning


class TestSubmitDecision:

    def test_accept_reinforces_applied_memories(self, feedback, processor, memory_store, make_invoice):
        entry = feedback.teach("Supplier GmbH", "field-mapping", "Leistungsdatum", "serviceDate")
        result = processor.process(make_invoice(raw_text="Leistungsdatum: 03.01.2024", poNumber="PO-A-050"))

        feedback.submit_decision(result, "ACCEPT")

        assert memory_store.get(entry.id).confidence == pytest.approx(0.75)

    def test_reject_penalises_applied_memories(self, feedback, processor, memory_store, make_invoice):
        entry = feedback.teach("Supplier GmbH", "field-mapping", "Leistungsdatum", "serviceDate")
        result = processor.process(make_invoice(raw_text="Leistungsdatum: 03.01.2024", poNumber="PO-A-050"))

        outcome = feedback.submit_decision(result, "REJECT")

        assert memory_store.get(entry.id).confidence == pytest.approx(0.3)
        assert outcome['rejection_rate'] == pytest.approx(0.2)

    def test_invalid_decision(self, feedback, processor, make_invoice):
        result = processor.process(make_invoice())

        with pytest.raises(ValidationError):
            feedback.submit_decision(result, "MAYBE")

    def test_duplicate_resolution_does_not_learn(self, feedback, processor, memory_store, make_invoice):
        original = make_invoice(invoice_id="INV-A-001")
        result = processor.process(make_invoice(invoice_id="INV-A-002"), history=[original])

        outcome = feedback.submit_decision(result, "REJECT")

        assert outcome['reinforced'] == []
        assert memory_store.all_entries() == []
