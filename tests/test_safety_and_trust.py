"""
Tests for safety nets, vendor trust, threshold gate and stage failure handling
"""
import pytest

from app.nodes.match_three_way_node import MatchThreeWayNode
from app.nodes.threshold_node import ThresholdNode
from app.workflow.invoice_workflow import InvoiceProcessor
from core.config.config import PipelineSettings, load_settings
from core.memory.memory_store import MemoryStore
from core.utils.error_handler import ErrorHandler, MatchingError, MemoryStoreError, error_handler
from core.utils.state_manager import state_manager
from integrations.catalog.reference_catalog import ReferenceCatalog

SERVICE_LINE = [{"description": "Consulting", "qty": 1, "unitPrice": 10.0}]


class TestSafetyNets:

    def test_unmapped_service_date(self, processor, make_invoice):
        invoice = make_invoice(raw_text="Leistungsdatum: 03.01.2024", poNumber="PO-A-050")

        result = processor.process(invoice)

        assert result.requires_human_review is True
        assert result.confidence_score == pytest.approx(0.60)
        assert result.reasoning == "Found 'Leistungsdatum' but don't know how to map it yet."
        assert any(s.details == "Escalated: Unmapped 'Leistungsdatum' field." for s in result.audit_trail)

    def test_vat_inclusive_language_without_correction(self, processor, make_invoice):
        invoice = make_invoice(raw_text="Alle Preise MwSt. inklusive", poNumber="PO-A-050")

        result = processor.process(invoice)

        assert result.requires_human_review is True
        assert result.confidence_score == pytest.approx(0.55)
        assert result.reasoning == "Detected VAT-inclusive language but math indicates Gross was treated as Net."

    def test_multiple_risks_last_one_narrates(self, processor, make_invoice):
        invoice = make_invoice(raw_text="Leistungsdatum: 03.01.2024 / MwSt. inkl", poNumber="PO-A-050")

        result = processor.process(invoice)

        assert result.confidence_score == pytest.approx(0.30)
        assert result.reasoning.startswith("Detected VAT-inclusive language")

    def test_learned_vat_correction_disarms_check(self, processor, feedback, make_invoice):
        feedback.teach("Supplier GmbH", "correction-pattern", "vat-inclusive", True)
        invoice = make_invoice(
            raw_text="Prices incl. VAT",
            poNumber="PO-A-050",
            netTotal=119.0,
            taxTotal=0.0,
            grossTotal=119.0,
        )

        result = processor.process(invoice)

        assert result.requires_human_review is False
        assert result.normalized_invoice.fields.net_total == pytest.approx(100.0)
        assert result.normalized_invoice.fields.tax_total == pytest.approx(19.0)

    def test_shipping_without_sku(self, processor, make_invoice):
        invoice = make_invoice(
            vendor="Freight & Co",
            raw_text="Seefracht Hamburg",
            line_items=[{"description": "Transport Container", "qty": 1, "unitPrice": 1200.0}],
        )

        result = processor.process(invoice)

        assert result.requires_human_review is True
        assert result.confidence_score == pytest.approx(0.65)
        assert result.reasoning == "Detected 'Seefracht' service but no SKU is assigned."

    def test_learned_sku_disarms_shipping_check(self, processor, feedback, make_invoice):
        feedback.teach("Freight & Co", "field-mapping", "Seefracht", "SKU-FREIGHT")
        invoice = make_invoice(
            vendor="Freight & Co",
            raw_text="Seefracht Hamburg",
            line_items=[{"description": "Seefracht Container", "qty": 1, "unitPrice": 1200.0}],
        )

        result = processor.process(invoice)

        assert result.requires_human_review is False
        assert result.confidence_score == pytest.approx(0.91)


class TestDefaultSettings:

    @pytest.fixture
    def default_processor(self, memory_store, catalog, clock):
        return InvoiceProcessor(memory_store, catalog, settings=PipelineSettings(), clock=clock)

    def test_duplicate_marker_without_yaml(self, default_processor, make_invoice):
        invoice = make_invoice(raw_text="DUPLICATE copy. Leistungsdatum 01.02.2024 MwSt. inkl", poNumber="PO-A-050")

        result = default_processor.process(invoice)

        assert result.is_duplicate is True
        assert result.requires_human_review is True
        assert result.confidence_score == 0.0

    def test_safety_nets_without_yaml(self, default_processor, make_invoice):
        invoice = make_invoice(raw_text="Leistungsdatum 01.02.2024 MwSt. inkl", poNumber="PO-A-050")

        result = default_processor.process(invoice)

        assert result.requires_human_review is True
        assert result.confidence_score == pytest.approx(0.30)


class TestVendorTrust:

    def test_high_rejection_rate(self, processor, memory_store, make_invoice):
        memory_store.learn("Acme Ltd", "resolution-history", "rejection-rate", 0.7)

        result = processor.process(make_invoice(vendor="Acme Ltd", confidence=0.9, line_items=SERVICE_LINE))

        assert result.requires_human_review is True
        assert result.confidence_score == pytest.approx(0.72)
        assert "Vendor has high historical rejection rate." in result.reasoning

    def test_clean_history_boost(self, processor, memory_store, make_invoice):
        for _ in range(3):
            memory_store.learn("Acme Ltd", "resolution-history", "rejection-rate", 0.0)

        result = processor.process(make_invoice(vendor="Acme Ltd", confidence=0.7, line_items=SERVICE_LINE))

        # (0.1 + 0.15 * 3/10) * (1 - 0.0)
        assert result.confidence_score == pytest.approx(0.845)
        assert result.requires_human_review is False
        assert "Applied Vendor Trust Boost" in result.reasoning

    def test_single_resolution_gets_no_boost(self, processor, memory_store, make_invoice):
        memory_store.learn("Acme Ltd", "resolution-history", "rejection-rate", 0.0)

        result = processor.process(make_invoice(vendor="Acme Ltd", confidence=0.7, line_items=SERVICE_LINE))

        assert result.confidence_score == pytest.approx(0.7)
        assert result.requires_human_review is True

    def test_stage_can_be_disabled(self, memory_store, catalog, settings, clock, make_invoice):
        memory_store.learn("Acme Ltd", "resolution-history", "rejection-rate", 0.7)
        settings.stages.vendor_trust = False
        processor = InvoiceProcessor(memory_store, catalog, settings=settings, clock=clock)

        result = processor.process(make_invoice(vendor="Acme Ltd", confidence=0.9, line_items=SERVICE_LINE))

        assert result.confidence_score == pytest.approx(0.9)
        assert result.requires_human_review is False


class TestThresholdAndFinalize:

    def test_below_threshold_is_reviewed(self, processor, make_invoice):
        result = processor.process(make_invoice(vendor="Acme Ltd", confidence=0.79, line_items=SERVICE_LINE))

        assert result.requires_human_review is True
        assert result.confidence_score == pytest.approx(0.74)
        assert result.reasoning.endswith("Confidence score is below threshold (80%).")
        assert result.audit_trail[-2].details == "Escalated: Confidence score 0.74 below threshold."

    def test_final_decision_entry(self, processor, make_invoice):
        result = processor.process(make_invoice(vendor="Acme Ltd", line_items=SERVICE_LINE))

        final = result.audit_trail[-1]
        assert final.step == 'decide'
        assert final.details == "Final Decision: Auto-Accept (Confidence: 0.85)"
        assert sum(1 for s in result.audit_trail if s.details.startswith("Final Decision")) == 1

    def test_audit_timestamps_never_go_backwards(self, processor, make_invoice):
        result = processor.process(make_invoice())

        timestamps = [s.timestamp for s in result.audit_trail]
        assert timestamps == sorted(timestamps)

    def test_threshold_from_environment(self, monkeypatch):
        monkeypatch.setenv("AUTO_ACCEPT_THRESHOLD", "0.7")

        assert load_settings().thresholds.auto_accept == pytest.approx(0.7)


class BrokenCatalog(ReferenceCatalog):

    def find_po(self, po_number):
        raise ConnectionError("PO index unavailable")


class BrokenStore(MemoryStore):

    def recall(self, vendor_name, min_confidence=None):
        raise MemoryStoreError("disk gone")


class TestStageFailures:

    def test_recoverable_failure_escalates(self, memory_store, settings, clock, make_invoice):
        processor = InvoiceProcessor(memory_store, BrokenCatalog(), settings=settings, clock=clock)
        errors_before = error_handler.get_error_summary()['total_errors']

        result = processor.process(make_invoice(poNumber="PO-A-050"))

        assert result.requires_human_review is True
        assert "Stage MATCH_THREE_WAY failed (MatchingError)." in result.reasoning
        assert result.audit_trail[-1].details.startswith("Final Decision: Human Review")
        assert error_handler.get_error_summary()['total_errors'] == errors_before + 1

    def test_catalog_failure_is_a_matching_error(self, settings, make_invoice):
        node = MatchThreeWayNode(settings, BrokenCatalog())
        state = state_manager.create_initial_state(make_invoice(poNumber="PO-A-050"))

        with pytest.raises(MatchingError) as excinfo:
            node.execute(state)

        assert excinfo.value.recoverable is True
        assert isinstance(excinfo.value.__cause__, ConnectionError)

    def test_error_log_is_bounded(self, make_invoice):
        handler = ErrorHandler(notify_ops_team=False, max_log_size=3)
        state = state_manager.create_initial_state(make_invoice())

        for _ in range(5):
            handler.handle_error(ConnectionError("PO index unavailable"), node="MATCH_THREE_WAY", state=state)

        summary = handler.get_error_summary()
        assert len(summary['errors']) == 3
        assert summary['total_errors'] == 5
        assert summary['by_node'] == {"MATCH_THREE_WAY": 5}

    def test_stage_stamps_state_with_run_clock(self, settings, clock, make_invoice):
        state = state_manager.create_initial_state(make_invoice(), clock=clock)
        clock.advance(hours=2)

        state = ThresholdNode(settings).run(state)

        assert state['updated_at'] == clock().isoformat()

    def test_unrecoverable_failure_propagates(self, tmp_path, catalog, settings, clock, make_invoice):
        store = BrokenStore(database_url=f"sqlite:///{tmp_path / 'broken.db'}", clock=clock)
        processor = InvoiceProcessor(store, catalog, settings=settings, clock=clock)

        with pytest.raises(MemoryStoreError):
            processor.process(make_invoice())
