# backend/supplier_parser.py

"""
Supplier Item Parser - best-effort packaging guess from invoice text

Supplier invoices describe cartons in free text, e.g.
    "OMO 20 BOXES X 20 PACKS X 100 PCS"
    "MILK POWDER 24 X 200GM (TINS)"
    "SUGAR 1 X 10KG BAG"

Rules are tried in order and the first match wins:
    1) triple   N UNIT x N UNIT x N UNIT
    2) nested   N BOXES/TRAYS/... x N PCS/SACHETS/...
    3) simple   N x SIZE UNIT            (N > 1)
    4) single   1 x SIZE UNIT [CONTAINER]
    5) bale     N BALE x SIZE KG
    6) unknown  single layer, one sellable unit

The result only seeds the editable layer list. Once a person edits the
layers, the packaging engine is the source of truth. Never raises.
"""

import logging
import re
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from packaging_engine import parse_float

logger = logging.getLogger(__name__)

MASTER_CARTON_UNIT = "CTN"

TRIPLE_PATTERN = re.compile(
    r"(\d+)\s*([A-Z]+)\s*[x×]\s*(\d+)\s*([A-Z]+)\s*[x×]\s*(\d+)\s*([A-Z]+)",
    re.IGNORECASE,
)
NESTED_PATTERN = re.compile(
    r"(\d+)\s*(BOXES?|TRAYS?|JARS?|BALES?|PKTS?|PACKS?|OUTERS?)\s*[x×]\s*"
    r"(\d+)\s*(PCS?|PIECES?|POUCHES?|SACHETS?|PACKETS?)",
    re.IGNORECASE,
)
SIMPLE_CARTON_PATTERN = re.compile(
    r"(\d+)\s*(?:PKTS?|X|×)\s*[x×]?\s*(\d+(?:\.\d+)?)\s*(GMS|GM|KGS|KG|ML|LTR|L|PIECES?|PCS?)",
    re.IGNORECASE,
)
SINGLE_UNIT_PATTERN = re.compile(
    r"1\s*[x×*]\s*(\d+(?:\.\d+)?)\s*(KGS|KG|GMS|GM|ML|LTR|L)\s*(BAG|BKT|BUCKET|CONTAINER)?",
    re.IGNORECASE,
)
BALE_PATTERN = re.compile(
    r"(\d+)\s*BALE\s*[x×]\s*(\d+(?:\.\d+)?)\s*(KGS|KG)",
    re.IGNORECASE,
)
PARENTHETICAL = re.compile(r"\(.*\)")


class PackagingType(str, Enum):
    TRIPLE = "triple"
    NESTED = "nested"
    SIMPLE = "simple"
    SINGLE = "single"
    BALE = "bale"
    UNKNOWN = "unknown"


class ParsedLayer(BaseModel):
    quantity: Union[int, float]
    unit: str


class ParsedStructure(BaseModel):
    layers: int
    outer: Optional[ParsedLayer] = None
    middle: Optional[ParsedLayer] = None
    inner: Optional[ParsedLayer] = None


class SupplierParseResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    product_name: str
    supplier_unit: str
    supplier_unit_quantity: Union[int, str]
    unit_breakdown: str
    packaging_structure: ParsedStructure
    buying_price_per_unit: float
    calculated_price_per_piece: float
    calculated_price_per_sub_unit: Optional[float] = None
    total_sellable_units: int
    packaging_type: PackagingType

    def to_layers(self) -> List[Dict[str, Any]]:
        """
        Editable layer guess ({qty, unit} dicts, master first).

        A CTN master is prepended when the outer unit comes in more than one
        per carton, so pieces per master equals total_sellable_units.
        Unknown packaging yields no guess.
        """
        structure = self.packaging_structure
        if self.packaging_type == PackagingType.UNKNOWN or structure.outer is None:
            return []

        chain = [structure.outer, structure.middle, structure.inner]
        layers = [{"qty": layer.quantity, "unit": layer.unit.upper()} for layer in chain if layer is not None]
        if structure.outer.quantity == 1:
            layers[0]["qty"] = 1
            return layers
        return [{"qty": 1, "unit": MASTER_CARTON_UNIT}] + layers


def _price_share(price: float, divisor: Union[int, float]) -> float:
    if not divisor:
        return round(price, 2)
    share = Decimal(str(price)) / Decimal(str(divisor))
    return float(share.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _format_size(size: float) -> str:
    return f"{size:g}"


def _clean_name(raw_name: str, pattern: "re.Pattern[str]") -> str:
    cleaned = pattern.sub("", raw_name, count=1)
    cleaned = PARENTHETICAL.sub("", cleaned, count=1)
    cleaned = re.sub(r"\s+", " ", cleaned.strip())
    return cleaned or raw_name.strip()


def _parse_triple(raw_name: str, name: str, price: float) -> Optional[SupplierParseResult]:
    match = TRIPLE_PATTERN.search(name)
    if not match:
        return None
    outer_qty, outer_unit = int(match.group(1)), match.group(2)
    mid_qty, mid_unit = int(match.group(3)), match.group(4)
    inner_qty, inner_unit = int(match.group(5)), match.group(6)
    total_pieces = outer_qty * mid_qty * inner_qty

    return SupplierParseResult(
        product_name=_clean_name(raw_name, TRIPLE_PATTERN),
        supplier_unit=MASTER_CARTON_UNIT,
        supplier_unit_quantity=total_pieces,
        unit_breakdown=f"{outer_qty} {outer_unit} × {mid_qty} {mid_unit} × {inner_qty} {inner_unit}",
        packaging_structure=ParsedStructure(
            layers=3,
            outer=ParsedLayer(quantity=outer_qty, unit=outer_unit),
            middle=ParsedLayer(quantity=mid_qty, unit=mid_unit),
            inner=ParsedLayer(quantity=inner_qty, unit=inner_unit),
        ),
        buying_price_per_unit=price,
        calculated_price_per_piece=_price_share(price, total_pieces),
        calculated_price_per_sub_unit=_price_share(price, outer_qty),
        total_sellable_units=total_pieces,
        packaging_type=PackagingType.TRIPLE,
    )


def _parse_nested(raw_name: str, name: str, price: float) -> Optional[SupplierParseResult]:
    match = NESTED_PATTERN.search(name)
    if not match:
        return None
    outer_qty, outer_unit = int(match.group(1)), match.group(2)
    inner_qty, inner_unit = int(match.group(3)), match.group(4)
    total_pieces = outer_qty * inner_qty

    return SupplierParseResult(
        product_name=_clean_name(raw_name, NESTED_PATTERN),
        supplier_unit=MASTER_CARTON_UNIT,
        supplier_unit_quantity=total_pieces,
        unit_breakdown=f"{outer_qty} {outer_unit} × {inner_qty} {inner_unit}",
        packaging_structure=ParsedStructure(
            layers=2,
            outer=ParsedLayer(quantity=outer_qty, unit=outer_unit),
            inner=ParsedLayer(quantity=inner_qty, unit=inner_unit),
        ),
        buying_price_per_unit=price,
        calculated_price_per_piece=_price_share(price, total_pieces),
        calculated_price_per_sub_unit=_price_share(price, outer_qty),
        total_sellable_units=total_pieces,
        packaging_type=PackagingType.NESTED,
    )


def _parse_simple_carton(raw_name: str, name: str, price: float) -> Optional[SupplierParseResult]:
    match = SIMPLE_CARTON_PATTERN.search(name)
    if not match:
        return None
    quantity = int(match.group(1))
    if quantity <= 1:
        return None
    size = float(match.group(2))
    unit = match.group(3)

    return SupplierParseResult(
        product_name=_clean_name(raw_name, SIMPLE_CARTON_PATTERN),
        supplier_unit=MASTER_CARTON_UNIT,
        supplier_unit_quantity=quantity,
        unit_breakdown=f"{quantity} × {_format_size(size)}{unit}",
        packaging_structure=ParsedStructure(
            layers=2,
            outer=ParsedLayer(quantity=quantity, unit="PIECES"),
            inner=ParsedLayer(quantity=size, unit=unit),
        ),
        buying_price_per_unit=price,
        calculated_price_per_piece=_price_share(price, quantity),
        total_sellable_units=quantity,
        packaging_type=PackagingType.SIMPLE,
    )


def _parse_single_unit(raw_name: str, name: str, price: float) -> Optional[SupplierParseResult]:
    match = SINGLE_UNIT_PATTERN.search(name)
    if not match:
        return None
    size = float(match.group(1))
    unit = match.group(2)
    container = match.group(3) or "UNIT"

    return SupplierParseResult(
        product_name=_clean_name(raw_name, SINGLE_UNIT_PATTERN),
        supplier_unit="UNIT",
        supplier_unit_quantity=f"{_format_size(size)}{unit}",
        unit_breakdown=f"{_format_size(size)}{unit} {container}",
        packaging_structure=ParsedStructure(
            layers=1,
            outer=ParsedLayer(quantity=1, unit=container),
            inner=ParsedLayer(quantity=size, unit=unit),
        ),
        buying_price_per_unit=price,
        calculated_price_per_piece=price,
        total_sellable_units=1,
        packaging_type=PackagingType.SINGLE,
    )


def _parse_bale(raw_name: str, name: str, price: float) -> Optional[SupplierParseResult]:
    match = BALE_PATTERN.search(name)
    if not match:
        return None
    quantity = int(match.group(1))
    size = float(match.group(2))
    unit = match.group(3)

    return SupplierParseResult(
        product_name=_clean_name(raw_name, BALE_PATTERN),
        supplier_unit="BALE",
        supplier_unit_quantity=quantity,
        unit_breakdown=f"{quantity} × {_format_size(size)}{unit}",
        packaging_structure=ParsedStructure(
            layers=2,
            outer=ParsedLayer(quantity=quantity, unit="BALE"),
            inner=ParsedLayer(quantity=size, unit=unit),
        ),
        buying_price_per_unit=price,
        calculated_price_per_piece=_price_share(price, quantity),
        total_sellable_units=quantity,
        packaging_type=PackagingType.BALE,
    )


PARSE_RULES = (
    _parse_triple,
    _parse_nested,
    _parse_simple_carton,
    _parse_single_unit,
    _parse_bale,
)


def parse_supplier_item(raw_name: Any, carton_price: Any = None) -> SupplierParseResult:
    """Guess the packaging of a supplier line item. Falls back to an unknown single layer."""
    raw = "" if raw_name is None else str(raw_name)
    name = raw.strip().upper()
    price = parse_float(carton_price) or 0.0

    for rule in PARSE_RULES:
        result = rule(raw, name, price)
        if result is not None:
            logger.debug(f"Supplier item '{raw}' parsed as {result.packaging_type.value}")
            return result

    return SupplierParseResult(
        product_name=raw.strip(),
        supplier_unit=MASTER_CARTON_UNIT,
        supplier_unit_quantity=1,
        unit_breakdown="Unknown packaging",
        packaging_structure=ParsedStructure(layers=1),
        buying_price_per_unit=price,
        calculated_price_per_piece=price,
        total_sellable_units=1,
        packaging_type=PackagingType.UNKNOWN,
    )
