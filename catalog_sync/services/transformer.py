"""Record transformer: supplier record shapes -> canonical catalog shapes.

Pure functions, no I/O. One transform per source variant.
"""
from typing import Any, Dict, Optional, Union

from catalog_sync.models.records import (
    ApiRecord,
    BulkFeedRecord,
    PricingFeedRecord,
    KitFeedRecord,
    BulkFileRecord,
    CatalogRecordData,
    PriceRecordData,
    KitComponentData,
)

DEFAULT_CATEGORY = "Uncategorized"
UNKNOWN_ITEM_NAME = "Unknown Item"


def _first(*values: Any) -> Any:
    """Return the first value that is not None or an empty string."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def transform_api_record(record: ApiRecord) -> CatalogRecordData:
    """Map an API item onto the canonical catalog record.

    Args:
        record: Item as returned by the supplier API

    Returns:
        CatalogRecordData ready for upsert

    Raises:
        ValueError: If the item carries no identifier (vcpn or id)
    """
    vcpn = _first(record.vcpn, record.id)
    if vcpn is None:
        raise ValueError("API record has no vcpn or id")

    part_number = _first(record.part_number, record.sku, record.part_number_camel)
    name = _first(record.name, record.title, part_number, vcpn)
    quantity = _first(record.quantity, record.quantity_available, record.available)

    attributes: Dict[str, Any] = {}
    if record.availability:
        attributes["availability"] = record.availability

    return CatalogRecordData(
        vcpn=str(vcpn).strip(),
        name=str(name).strip(),
        description=_clean(record.description),
        part_number=_clean(part_number),
        brand=_clean(record.brand),
        category=_clean(record.category) or DEFAULT_CATEGORY,
        quantity=int(quantity or 0),
        price=_first(record.list_price, record.retail_price, record.price),
        cost=_first(record.cost, record.wholesale_price),
        core_charge=record.core_charge,
        is_kit=record.is_kit,
        attributes=attributes,
    )


def transform_bulk_feed_record(record: BulkFeedRecord) -> CatalogRecordData:
    """Map a bulk inventory feed item onto the canonical catalog record."""
    attributes: Dict[str, Any] = {}
    for key in ("warehouse", "location", "availability", "last_updated"):
        value = getattr(record, key)
        if value:
            attributes[key] = value

    return CatalogRecordData(
        vcpn=record.vcpn.strip(),
        name=_first(record.name, record.vcpn).strip(),
        description=_clean(record.description),
        brand=_clean(record.brand),
        category=_clean(record.category) or DEFAULT_CATEGORY,
        quantity=record.quantity,
        price=record.price,
        cost=record.cost,
        weight=record.weight,
        attributes=attributes,
    )


def transform_pricing_record(record: PricingFeedRecord) -> PriceRecordData:
    """Map a pricing row onto a full set of price tiers.

    Tiers absent from the row stay None so the stored record is
    superseded rather than merged.
    """
    return PriceRecordData(
        vcpn=record.vcpn.strip(),
        list_price=_first(record.list_price, record.price),
        dealer_price=record.dealer_price,
        jobber_price=record.jobber_price,
        retail_price=record.retail_price,
        cost=record.cost,
        core_charge=record.core_charge,
        effective_date=record.effective_date,
        currency=(record.currency or "USD").upper(),
    )


def transform_kit_record(record: KitFeedRecord) -> KitComponentData:
    """Map a kit component row onto the canonical component line."""
    return KitComponentData(
        kit_vcpn=record.kit_vcpn.strip(),
        component_vcpn=record.component_vcpn.strip(),
        component_name=_clean(record.component_name),
        description=_clean(record.description),
        quantity=record.quantity or 1,
        unit_price=_first(record.unit_price, record.list_price),
        core_charge=record.core_charge,
        is_required=record.is_required,
    )


def transform_bulk_file_record(record: BulkFileRecord) -> CatalogRecordData:
    """Map a validated bulk CSV row onto the canonical catalog record."""
    attributes: Dict[str, Any] = {}
    for key in ("vendor_code", "upc_code", "aaia_code", "prop65_toxicity", "kit_components"):
        value = getattr(record, key)
        if value:
            attributes[key] = value
    for key in ("ups_ground_assessorial", "us_ltl"):
        value = getattr(record, key)
        if value is not None:
            attributes[key] = str(value)

    return CatalogRecordData(
        vcpn=record.vcpn,
        name=_first(record.long_description, record.part_number, UNKNOWN_ITEM_NAME),
        description=record.long_description,
        part_number=record.part_number or None,
        manufacturer_part_no=record.manufacturer_part_no,
        supplier=record.vendor_name or None,
        quantity=record.total_qty,
        regional_quantities=dict(record.regional_quantities),
        price=record.jobber_price,
        cost=record.cost,
        core_charge=record.core_charge,
        weight=record.weight,
        height=record.height,
        length=record.length,
        width=record.width,
        case_qty=record.case_qty,
        is_kit=record.is_kit,
        is_hazmat=record.is_hazmat,
        is_oversized=record.is_oversized,
        is_non_returnable=record.is_non_returnable,
        is_chemical=record.is_chemical,
        upsable=record.upsable,
        attributes=attributes,
    )


def catalog_record_fields(record: CatalogRecordData) -> Dict[str, Any]:
    """Column values for catalog_items (JSON-safe attributes)."""
    return record.model_dump()


def price_record_fields(record: PriceRecordData) -> Dict[str, Any]:
    """Column values for price_records."""
    return record.model_dump()


def kit_component_fields(record: KitComponentData) -> Dict[str, Any]:
    """Column values for kit_components."""
    return record.model_dump()


def parse_api_payload(payload: Union[Dict[str, Any], ApiRecord]) -> ApiRecord:
    """Accept either a raw API dict or an already-parsed ApiRecord."""
    if isinstance(payload, ApiRecord):
        return payload
    return ApiRecord.model_validate(payload)

