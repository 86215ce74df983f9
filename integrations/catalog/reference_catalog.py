"""
Reference Catalog - read-only lookup of Purchase Orders and Delivery Notes

Records are handed over by whatever loads the reference datasets. Missing
or malformed data never fails the engine: unusable records are skipped
with a warning and lookups simply come back empty.
"""
from typing import Any, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

from core.models.invoice import DeliveryNote, PurchaseOrder
from core.utils.logging_config import get_logger

logger = get_logger(__name__)

RecordT = TypeVar('RecordT', bound=BaseModel)


def _coerce_records(raw: Any, model: Type[RecordT], label: str) -> List[RecordT]:
    """
    Validate raw reference records, dropping the ones that do not parse

    Args:
        raw: Iterable of dicts or models; anything else counts as empty
        model: Pydantic model to validate against
        label: Dataset name for log messages

    Returns:
        List of validated records
    """
    if raw is None:
        logger.warning(f"No {label} data supplied, treating as empty")
        return []

    if isinstance(raw, (str, bytes, dict)) or not isinstance(raw, Iterable):
        logger.warning(f"Malformed {label} data ({type(raw).__name__}), treating as empty")
        return []

    records = []
    for index, item in enumerate(raw):
        if isinstance(item, model):
            records.append(item)
            continue
        try:
            records.append(model.model_validate(item))
        except PydanticValidationError as e:
            logger.warning(f"Skipping malformed {label} record #{index}: {e.error_count()} errors")

    return records


class ReferenceCatalog:
    """
    Lookup over Purchase Orders and Delivery Notes
    """

    def __init__(
        self,
        purchase_orders: Optional[Iterable[Any]] = None,
        delivery_notes: Optional[Iterable[Any]] = None
    ):
        """
        Initialize catalog from reference records

        Args:
            purchase_orders: Purchase order records (dicts in the camelCase
                JSON shape, or PurchaseOrder models)
            delivery_notes: Delivery note records (dicts or DeliveryNote models)
        """
        self.purchase_orders: List[PurchaseOrder] = _coerce_records(
            purchase_orders, PurchaseOrder, 'purchase order'
        )
        self.delivery_notes: List[DeliveryNote] = _coerce_records(
            delivery_notes, DeliveryNote, 'delivery note'
        )
        logger.info(
            f"Reference catalog loaded - POs: {len(self.purchase_orders)}, "
            f"DNs: {len(self.delivery_notes)}"
        )

    def find_po(self, po_number: Optional[str]) -> Optional[PurchaseOrder]:
        """
        Find a purchase order by number

        Args:
            po_number: PO number

        Returns:
            Matching PO or None
        """
        if not po_number:
            return None

        for po in self.purchase_orders:
            if po.po_number == po_number:
                return po

        logger.info(f"No PO found for number: {po_number}")
        return None

    def find_dn(self, po_number: Optional[str], vendor: Optional[str]) -> Optional[DeliveryNote]:
        """
        Find the delivery note for a PO from a given vendor

        Args:
            po_number: PO number the delivery was made against
            vendor: Vendor name

        Returns:
            Matching delivery note or None
        """
        if not po_number:
            return None

        for dn in self.delivery_notes:
            if dn.po_number == po_number and dn.vendor == vendor:
                return dn

        logger.info(f"No delivery note found for PO {po_number} / vendor {vendor}")
        return None

    def purchase_orders_for_vendor(self, vendor: str) -> List[PurchaseOrder]:
        """All purchase orders issued to vendor"""
        return [po for po in self.purchase_orders if po.vendor == vendor]
