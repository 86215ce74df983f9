"""
Tests for recall and application of learned memories
"""
import pytest

from app.nodes.recall_node import RecallNode
from core.utils.state_manager import NO_APPLICABLE_MEMORY, state_manager

RAW_WITH_SERVICE_DATE = "Rechnung 2024-001\nLeistungsdatum: 03.01.2024\nWidget"


def _recall(settings, memory_store, invoice):
    state = state_manager.create_initial_state(invoice)
    return RecallNode(settings, memory_store).execute(state)


class TestRecallBookkeeping:

    def test_no_memories_nudges_uncertain_invoice(self, settings, memory_store, make_invoice):
        state = _recall(settings, memory_store, make_invoice(confidence=0.78))

        assert state['confidence_score'] == pytest.approx(0.73)
        assert [s.step for s in state['audit_trail'].steps] == ['recall', 'recall']

    def test_no_memories_leaves_confident_invoice(self, settings, memory_store, make_invoice):
        state = _recall(settings, memory_store, make_invoice(confidence=0.9))

        assert state['confidence_score'] == pytest.approx(0.9)

    @pytest.mark.parametrize("auto_accept, seed, expected", [
        (0.95, 0.9, 0.9),
        (0.5, 0.78, 0.73),
    ])
    def test_nudge_gate_ignores_auto_accept_threshold(self, settings, memory_store, make_invoice,
                                                       auto_accept, seed, expected):
        settings.thresholds.auto_accept = auto_accept

        state = _recall(settings, memory_store, make_invoice(confidence=seed))

        assert state['confidence_score'] == pytest.approx(expected)

    def test_recall_threshold_from_settings(self, settings, memory_store, make_invoice):
        memory_store.learn("Supplier GmbH", "field-mapping", "Leistungsdatum", "serviceDate")
        memory_store.learn("Supplier GmbH", "field-mapping", "Leistungsdatum", "serviceDate", False)
        settings.thresholds.min_recall_confidence = 0.35

        state = _recall(settings, memory_store, make_invoice(raw_text=RAW_WITH_SERVICE_DATE))

        assert state['memories'] == []
        assert state['memory_updates'] == []

    def test_low_confidence_memories_are_reported(self, settings, memory_store, make_invoice):
        memory_store.learn("Supplier GmbH", "field-mapping", "Leistungsdatum", "serviceDate")
        memory_store.learn("Supplier GmbH", "field-mapping", "Leistungsdatum", "serviceDate", False)

        state = _recall(settings, memory_store, make_invoice(raw_text=RAW_WITH_SERVICE_DATE))

        assert state['reasoning'] == "Found memories but confidence too low to auto-apply."
        assert state['applied_memory_ids'] == []
        assert any("confidence too low" in update for update in state['memory_updates'])

    def test_eligible_but_inapplicable(self, settings, memory_store, make_invoice):
        memory_store.learn("Supplier GmbH", "field-mapping", "Leistungsdatum", "serviceDate")

        state = _recall(settings, memory_store, make_invoice(raw_text="Rechnung ohne Datum", confidence=0.7))

        assert state['reasoning'] == NO_APPLICABLE_MEMORY
        # eligible entries existed, so no nudge
        assert state['confidence_score'] == pytest.approx(0.7)


class TestServiceDateMapping:

    def test_mapping_fills_service_date(self, settings, memory_store, make_invoice):
        entry = memory_store.learn("Supplier GmbH", "field-mapping", "Leistungsdatum", "serviceDate")
        invoice = make_invoice(raw_text=RAW_WITH_SERVICE_DATE, confidence=0.78)

        state = _recall(settings, memory_store, invoice)

        assert state['normalized_invoice'].fields.service_date == "03.01.2024"
        assert invoice.fields.service_date is None
        assert state['applied_memory_ids'] == [entry.id]
        assert state['confidence_score'] == pytest.approx(0.84)
        assert state['proposed_corrections'] == [
            "Extracted Service Date '03.01.2024' from 'Leistungsdatum' (Memory Confidence: 0.60)"
        ]
        assert state['reasoning'] == "Applied 1 learned patterns."

    def test_missing_date_uses_fallback(self, settings, memory_store, make_invoice):
        memory_store.learn("Supplier GmbH", "field-mapping", "Leistungsdatum", "serviceDate")

        state = _recall(settings, memory_store, make_invoice(raw_text="Leistungsdatum: siehe Lieferschein"))

        assert state['normalized_invoice'].fields.service_date == "01.01.2024"


class TestVatInclusive:

    def test_gross_119_splits_into_100_and_19(self, settings, memory_store, make_invoice):
        memory_store.learn("Parts AG", "correction-pattern", "vat-inclusive", True)
        invoice = make_invoice(
            vendor="Parts AG",
            raw_text="Prices incl. VAT",
            confidence=0.75,
            netTotal=119.0,
            taxTotal=0.0,
            grossTotal=119.0,
        )

        state = _recall(settings, memory_store, invoice)

        fields = state['normalized_invoice'].fields
        assert fields.net_total == pytest.approx(100.0)
        assert fields.tax_total == pytest.approx(19.0)
        assert invoice.fields.net_total == pytest.approx(119.0)
        assert state['confidence_score'] == pytest.approx(0.84)
        assert "Recalculated Net: 100.00 / Tax: 19.00" in state['proposed_corrections'][0]

    def test_zero_gross_does_not_raise(self, settings, memory_store, make_invoice):
        memory_store.learn("Parts AG", "correction-pattern", "vat-inclusive", True)

        state = _recall(settings, memory_store, make_invoice(vendor="Parts AG", grossTotal=0.0))

        assert state['normalized_invoice'].fields.net_total == 0.0
        assert state['normalized_invoice'].fields.tax_total == 0.0


class TestSkuMapping:

    def test_keyword_in_description(self, settings, memory_store, make_invoice):
        memory_store.learn("Freight & Co", "field-mapping", "Seefracht", "SKU-FREIGHT")
        invoice = make_invoice(
            vendor="Freight & Co",
            raw_text="Seefracht Hamburg - Shanghai",
            line_items=[
                {"description": "Seefracht Container", "qty": 1, "unitPrice": 1200.0},
                {"description": "Hafengebuehr", "qty": 1, "unitPrice": 80.0},
            ],
        )

        state = _recall(settings, memory_store, invoice)

        items = state['normalized_invoice'].fields.line_items
        assert items[0].sku == "SKU-FREIGHT"
        assert items[0].description == "Seefracht Container (SKU-FREIGHT)"
        assert items[1].sku is None

    def test_keyword_only_in_raw_text(self, settings, memory_store, make_invoice):
        memory_store.learn("Freight & Co", "field-mapping", "Seefracht", "SKU-FREIGHT")
        invoice = make_invoice(
            vendor="Freight & Co",
            raw_text="Leistung: Seefracht",
            line_items=[{"description": "Transport", "qty": 1, "unitPrice": 1200.0}],
        )

        state = _recall(settings, memory_store, invoice)

        assert state['normalized_invoice'].fields.line_items[0].sku == "SKU-FREIGHT"

    def test_existing_skus_are_kept(self, settings, memory_store, make_invoice):
        memory_store.learn("Freight & Co", "field-mapping", "Seefracht", "SKU-FREIGHT")
        invoice = make_invoice(
            vendor="Freight & Co",
            raw_text="Seefracht",
            line_items=[{"sku": "SKU-OWN", "description": "Seefracht", "qty": 1, "unitPrice": 10.0}],
        )

        state = _recall(settings, memory_store, invoice)

        assert state['normalized_invoice'].fields.line_items[0].sku == "SKU-OWN"
        assert state['applied_memory_ids'] == []


class TestDnPriority:

    def test_only_applied_with_po(self, settings, memory_store, make_invoice):
        entry = memory_store.learn("Parts AG", "correction-pattern", "qty-mismatch-adjust", "dn-priority")

        without_po = _recall(settings, memory_store, make_invoice(vendor="Parts AG"))
        with_po = _recall(settings, memory_store, make_invoice(vendor="Parts AG", poNumber="PO-B-100"))

        assert without_po['applied_memory_ids'] == []
        assert with_po['applied_memory_ids'] == [entry.id]
