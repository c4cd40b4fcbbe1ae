"""Pydantic models for supplier record shapes and the canonical catalog record.

Every source has its own tagged variant (``source`` literal) so that a
record never carries another channel's optional fields:

    - ApiRecord: item returned by the request/response API
    - BulkFeedRecord: item from the bulk inventory feed
    - PricingFeedRecord: pricing row (bulk feed or API pricing call)
    - KitFeedRecord: kit component row (bulk feed or API kit call)
    - BulkFileRecord: validated row of an uploaded bulk CSV file

The transformer maps each variant onto CatalogRecordData,
PriceRecordData or KitComponentData.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from decimal import Decimal
from datetime import datetime
from typing import Any, Dict, Literal, Optional


MONEY = Decimal("0.01")


def _quantize(v: Optional[Decimal]) -> Optional[Decimal]:
    return v.quantize(MONEY) if v is not None else None


def _to_str(v: Any) -> Any:
    """Identifiers arrive as ints from some endpoints."""
    if v is None or isinstance(v, str):
        return v
    return str(v)


class ApiRecord(BaseModel):
    """Item returned by the supplier API.

    Field names vary between endpoints, so several aliases are kept
    and resolved by the transformer.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    source: Literal["api"] = "api"
    vcpn: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None
    title: Optional[str] = None
    part_number: Optional[str] = None
    sku: Optional[str] = None
    part_number_camel: Optional[str] = Field(default=None, alias="partNumber")
    brand: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    cost: Optional[Decimal] = None
    wholesale_price: Optional[Decimal] = None
    list_price: Optional[Decimal] = None
    retail_price: Optional[Decimal] = None
    price: Optional[Decimal] = None
    core_charge: Optional[Decimal] = None
    quantity: Optional[int] = None
    quantity_available: Optional[int] = None
    available: Optional[int] = None
    availability: Optional[str] = None
    is_kit: bool = False

    @field_validator('vcpn', 'id', 'part_number', 'sku', 'part_number_camel', mode='before')
    @classmethod
    def coerce_identifiers(cls, v: Any) -> Any:
        return _to_str(v)


class BulkFeedRecord(BaseModel):
    """Inventory item from the bulk file-transfer feed."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source: Literal["bulk_feed"] = "bulk_feed"
    vcpn: str = Field(..., min_length=1)
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    price: Optional[Decimal] = None
    cost: Optional[Decimal] = None
    quantity: int = 0
    weight: Optional[Decimal] = None
    warehouse: Optional[str] = None
    location: Optional[str] = None
    availability: Optional[str] = None
    last_updated: Optional[str] = Field(default=None, alias="lastUpdated")

    @field_validator('vcpn', mode='before')
    @classmethod
    def coerce_vcpn(cls, v: Any) -> Any:
        return _to_str(v)


class PricingFeedRecord(BaseModel):
    """Pricing row from the bulk feed or an API pricing call."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source: Literal["pricing_feed"] = "pricing_feed"
    vcpn: str = Field(..., min_length=1)
    price: Optional[Decimal] = Field(default=None, description="List price")
    list_price: Optional[Decimal] = None
    dealer_price: Optional[Decimal] = None
    jobber_price: Optional[Decimal] = None
    retail_price: Optional[Decimal] = None
    cost: Optional[Decimal] = None
    core_charge: Optional[Decimal] = None
    effective_date: Optional[datetime] = Field(default=None, alias="effectiveDate")
    currency: Optional[str] = None

    @field_validator('vcpn', mode='before')
    @classmethod
    def coerce_vcpn(cls, v: Any) -> Any:
        return _to_str(v)


class KitFeedRecord(BaseModel):
    """Kit component row from the bulk feed or an API kit call."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source: Literal["kit_feed"] = "kit_feed"
    kit_vcpn: str = Field(..., min_length=1, alias="kitVcpn")
    component_vcpn: str = Field(..., min_length=1, alias="componentVcpn")
    component_name: Optional[str] = Field(default=None, alias="componentName")
    description: Optional[str] = None
    quantity: Optional[int] = None
    unit_price: Optional[Decimal] = Field(default=None, alias="unitPrice")
    list_price: Optional[Decimal] = None
    core_charge: Optional[Decimal] = None
    is_required: bool = True

    @field_validator('kit_vcpn', 'component_vcpn', mode='before')
    @classmethod
    def coerce_identifiers(cls, v: Any) -> Any:
        return _to_str(v)


class BulkFileRecord(BaseModel):
    """Normalized and derived fields of one bulk CSV row."""

    source: Literal["bulk_file"] = "bulk_file"
    vendor_name: str = ""
    vcpn: str = ""
    vendor_code: str = ""
    part_number: str = ""
    manufacturer_part_no: Optional[str] = None
    long_description: Optional[str] = None
    jobber_price: Optional[Decimal] = None
    cost: Optional[Decimal] = None
    core_charge: Optional[Decimal] = None
    weight: Optional[Decimal] = None
    height: Optional[Decimal] = None
    length: Optional[Decimal] = None
    width: Optional[Decimal] = None
    regional_quantities: Dict[str, int] = Field(default_factory=dict)
    total_qty: int = 0
    calculated_total_qty: int = 0
    upsable: bool = False
    is_non_returnable: bool = False
    is_oversized: bool = False
    is_hazmat: bool = False
    is_chemical: bool = False
    is_kit: bool = False
    case_qty: Optional[int] = None
    prop65_toxicity: Optional[str] = None
    upc_code: Optional[str] = None
    aaia_code: Optional[str] = None
    ups_ground_assessorial: Optional[Decimal] = None
    us_ltl: Optional[Decimal] = None
    kit_components: Optional[str] = None


class CatalogRecordData(BaseModel):
    """Canonical catalog record, the only shape written to catalog_items."""

    vcpn: str = Field(..., min_length=1, max_length=100, description="Supplier part code")
    name: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    part_number: Optional[str] = None
    manufacturer_part_no: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    supplier: Optional[str] = None
    quantity: int = Field(default=0, description="Overall quantity, never negative")
    regional_quantities: Dict[str, int] = Field(default_factory=dict)
    price: Optional[Decimal] = None
    cost: Optional[Decimal] = None
    core_charge: Optional[Decimal] = None
    weight: Optional[Decimal] = None
    height: Optional[Decimal] = None
    length: Optional[Decimal] = None
    width: Optional[Decimal] = None
    case_qty: Optional[int] = None
    is_kit: bool = False
    is_hazmat: bool = False
    is_oversized: bool = False
    is_non_returnable: bool = False
    is_chemical: bool = False
    upsable: bool = True
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('price', 'cost', 'core_charge')
    @classmethod
    def validate_money_precision(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        """Quantize money fields to 2 decimal places."""
        return _quantize(v)

    @field_validator('quantity')
    @classmethod
    def clamp_quantity(cls, v: int) -> int:
        """Feeds report backorders as negative stock; the catalog stores zero."""
        return max(v, 0)


class PriceRecordData(BaseModel):
    """Canonical price tiers for one part."""

    vcpn: str = Field(..., min_length=1, max_length=100)
    list_price: Optional[Decimal] = None
    dealer_price: Optional[Decimal] = None
    jobber_price: Optional[Decimal] = None
    retail_price: Optional[Decimal] = None
    cost: Optional[Decimal] = None
    core_charge: Optional[Decimal] = None
    effective_date: Optional[datetime] = None
    currency: str = Field(default="USD", min_length=3, max_length=3)

    @field_validator('list_price', 'dealer_price', 'jobber_price', 'retail_price', 'cost', 'core_charge')
    @classmethod
    def validate_money_precision(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _quantize(v)


class KitComponentData(BaseModel):
    """Canonical kit component line."""

    kit_vcpn: str = Field(..., min_length=1, max_length=100)
    component_vcpn: str = Field(..., min_length=1, max_length=100)
    component_name: Optional[str] = None
    description: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    unit_price: Optional[Decimal] = None
    core_charge: Optional[Decimal] = None
    is_required: bool = True

    @field_validator('unit_price', 'core_charge')
    @classmethod
    def validate_money_precision(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _quantize(v)

    @property
    def key(self) -> tuple:
        return (self.kit_vcpn, self.component_vcpn)
