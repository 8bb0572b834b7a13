# backend/packaging_engine.py

"""
Packaging Engine - Layer model, quantity aggregation and stock normalization

A product's packaging is an ordered list of layers:
    index 0      = master / supplier unit (e.g. CTN)
    index 1..n-1 = inner packs
    index n      = retail piece (or a measurement such as 200 GM)

Each layer's quantity is how many of its own units fit in one unit of the
countable layer above it. Layer 0 always counts as 1.

This engine is responsible for:
- Classifying layers as countable or measurement
- Counting pieces below any layer
- Normalizing loose stock tallies (mixed-radix carry)
- Entry clamping of loose stock
- Stock roll-up and replenishment

This engine MUST NOT:
- Price layers (see pricing_engine.py)
- Persist anything
- Raise on numeric garbage (bad quantities count as 1, bad stock as 0)
"""

import logging
import re
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

# ==================== CONSTANTS ====================

MEASUREMENT_UNITS = frozenset({
    "KG", "KGS",
    "G", "GM", "GMS", "GRAM", "GRAMS",
    "ML",
    "L", "LTR", "LTRS", "LITRE", "LITRES",
})

DEFAULT_MASTER_UNIT = "BOXES"
DEFAULT_RETAIL_UNIT = "PCS"

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_LEADING_FLOAT = re.compile(r"^\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+))")


class LayerRole(str, Enum):
    MASTER = "master"
    INNER = "inner"
    RETAIL = "retail"


# ==================== ERROR CLASSES ====================

class PackagingError(Exception):
    """Base packaging error"""
    def __init__(self, error_code: str, message: str, field: Optional[str] = None, severity: str = "HARD_ERROR"):
        self.error_code = error_code
        self.message = message
        self.field = field
        self.severity = severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "field": self.field,
            "severity": self.severity,
        }


class EmptyPackagingStructureError(PackagingError):
    """A packaging structure needs at least the master layer"""
    def __init__(self):
        super().__init__(
            "EMPTY_PACKAGING_STRUCTURE",
            "Packaging structure must contain at least one layer.",
            field="packagingStructure",
        )


class LayerIndexError(PackagingError):
    """Layer index is out of range or points at a measurement layer"""
    def __init__(self, index: int, reason: str):
        super().__init__(
            "INVALID_LAYER_INDEX",
            f"Layer {index} cannot be used: {reason}",
            field="layerIndex",
        )


class InvalidReplenishQuantityError(PackagingError):
    """Replenish quantity must be positive"""
    def __init__(self, quantity: Any):
        super().__init__(
            "INVALID_REPLENISH_QUANTITY",
            f"Quantity must be greater than 0. Received: {quantity}",
            field="quantity",
        )


# ==================== COERCION ====================

def parse_int(value: Any) -> Optional[int]:
    """Leading-integer parse ("24 pcs" -> 24, "2.9" -> 2). None when nothing parses."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        return int(value)
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else None


def parse_float(value: Any) -> Optional[float]:
    """Leading-number parse for prices. None when nothing parses."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = _LEADING_FLOAT.match(str(value))
        if not match:
            return None
        number = float(match.group(1))
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def coerce_quantity(value: Any) -> int:
    """Countable quantity: anything non-positive or unparseable counts as 1."""
    qty = parse_int(value)
    return qty if qty and qty > 0 else 1


def coerce_stock(value: Any) -> int:
    """Stock tally: anything negative or unparseable counts as 0."""
    count = parse_int(value)
    return count if count and count > 0 else 0


def coerce_price(value: Any) -> Optional[float]:
    """Prices: blank, zero and garbage mean "no price"."""
    price = parse_float(value)
    return price if price else None


# ==================== LAYER CLASSIFIER ====================

def normalize_unit_label(unit: Any) -> str:
    if unit is None:
        return ""
    return str(unit).strip().upper()


def is_measurement_unit(unit: Any) -> bool:
    """True for content-quantity units (KG, G, ML, L ...). Empty/None -> False."""
    normalized = normalize_unit_label(unit)
    if not normalized:
        return False
    return normalized in MEASUREMENT_UNITS


# ==================== DATA MODELS ====================

class CountableLayer(BaseModel):
    """Box, pack, piece... participates in quantity, price and stock arithmetic"""
    kind: Literal["countable"] = "countable"
    quantity: int = Field(default=1, ge=1)
    unit: str
    selling_price: Optional[float] = None
    stock: Optional[int] = Field(default=None, ge=0)

    @property
    def is_measurement(self) -> bool:
        return False


class MeasurementLayer(BaseModel):
    """Describes content size (200 GM, 1 L); never priced or stocked"""
    kind: Literal["measurement"] = "measurement"
    quantity: float = 1
    unit: str

    @property
    def is_measurement(self) -> bool:
        return True


PackagingLayer = Annotated[Union[CountableLayer, MeasurementLayer], Field(discriminator="kind")]


class PersistedLayer(BaseModel):
    """Layer shape as stored by the inventory API"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    qty: Union[int, float]
    unit: str
    selling_price: Optional[float] = None
    stock: Optional[int] = None


class ProductPackagingRecord(BaseModel):
    """Packaging owned by one inventory item; layers are replaced wholesale on edit"""
    buying_price_per_unit: Optional[float] = None
    layers: List[PackagingLayer]

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ProductPackagingRecord":
        return cls(
            buying_price_per_unit=coerce_price(payload.get("buyingPricePerUnit")),
            layers=build_layers(payload.get("packagingStructure") or []),
        )


class StockSummary(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_pieces: int
    display_unit: str


def _raw_get(raw: Any, *keys: str) -> Any:
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def build_layer(raw: Any, index: int) -> Union[CountableLayer, MeasurementLayer]:
    """Turn one raw layer dict ({qty, unit, sellingPrice, stock}) into a typed layer."""
    unit = normalize_unit_label(_raw_get(raw, "unit")) or DEFAULT_RETAIL_UNIT
    raw_qty = _raw_get(raw, "qty", "quantity")

    if is_measurement_unit(unit):
        size = parse_float(raw_qty)
        return MeasurementLayer(quantity=size if size and size > 0 else 1, unit=unit)

    stock = _raw_get(raw, "stock")
    return CountableLayer(
        quantity=1 if index == 0 else coerce_quantity(raw_qty),
        unit=unit,
        selling_price=coerce_price(_raw_get(raw, "sellingPrice", "selling_price", "price")),
        stock=None if stock is None else coerce_stock(stock),
    )


def build_layers(raw_layers: Sequence[Any]) -> List[Union[CountableLayer, MeasurementLayer]]:
    """Typed layer list from the persisted/raw structure. At least one layer required."""
    if not raw_layers:
        raise EmptyPackagingStructureError()
    return [build_layer(raw, i) for i, raw in enumerate(raw_layers)]


def default_layers() -> List[Union[CountableLayer, MeasurementLayer]]:
    return [CountableLayer(quantity=1, unit=DEFAULT_MASTER_UNIT)]


def coerce_stock_map(stock: Optional[Mapping[Any, Any]]) -> Dict[int, int]:
    """Index-keyed stock map from loosely typed input ({"0": "3", 2: 250})."""
    result: Dict[int, int] = {}
    for key, value in (stock or {}).items():
        index = parse_int(key)
        if index is None or index < 0:
            continue
        result[index] = coerce_stock(value)
    return result


# ==================== PACKAGING ENGINE ====================

class PackagingEngine:
    """
    Stateless packaging arithmetic.

    All methods take the layer list explicitly and never mutate it or the
    maps they are given.
    """

    def cumulative_qty_up_to(self, layers: Sequence[PackagingLayer], index: int) -> int:
        """
        Number of innermost pieces in one unit of layer `index`.

        Multiplies quantities of layers index+1..last, skipping measurement
        layers. The innermost layer and any out-of-range index give 1.
        """
        if index < 0 or index >= len(layers):
            return 1
        acc = 1
        for layer in layers[index + 1:]:
            if layer.is_measurement:
                continue
            acc *= coerce_quantity(layer.quantity)
        return acc

    def total_pieces_per_master(self, layers: Sequence[PackagingLayer]) -> int:
        return self.cumulative_qty_up_to(layers, 0)

    def innermost_priced_index(self, layers: Sequence[PackagingLayer]) -> int:
        """Retail layer for the save payload: last layer, stepping back over measurements."""
        index = len(layers) - 1
        while index > 0 and layers[index].is_measurement:
            index -= 1
        return max(index, 0)

    def layer_role(self, layers: Sequence[PackagingLayer], index: int) -> LayerRole:
        if index == 0:
            return LayerRole.MASTER
        if index == len(layers) - 1:
            return LayerRole.RETAIL
        return LayerRole.INNER

    def countable_indices(self, layers: Sequence[PackagingLayer]) -> List[int]:
        return [i for i, layer in enumerate(layers) if not layer.is_measurement]

    def _carry_target(self, layers: Sequence[PackagingLayer], index: int) -> Optional[int]:
        for target in range(index - 1, -1, -1):
            if not layers[target].is_measurement:
                return target
        return None

    def normalize_stock(
        self,
        layers: Sequence[PackagingLayer],
        stock: Optional[Mapping[Any, Any]],
    ) -> Dict[int, int]:
        """
        Carry overflowing loose counts outward, innermost to outermost.

        Each countable layer is a digit whose base is its own quantity.
        Measurement layers are skipped entirely: a carry lands on the nearest
        countable layer above. The master layer is never capped.

        Returns a new map keyed by every countable layer index.
        """
        current = coerce_stock_map(stock)
        normalized = {i: current.get(i, 0) for i in self.countable_indices(layers)}

        for i in range(len(layers) - 1, 0, -1):
            layer = layers[i]
            if layer.is_measurement:
                continue
            qty_per_set = coerce_quantity(layer.quantity)
            count = normalized.get(i, 0)
            if count < qty_per_set:
                continue

            target = self._carry_target(layers, i)
            if target is None:
                logger.warning(f"No countable layer above layer {i} ({layer.unit}); loose stock {count} left as is")
                continue

            sets, remainder = divmod(count, qty_per_set)
            normalized[target] = normalized.get(target, 0) + sets
            normalized[i] = remainder
            logger.debug(f"Carried {sets} set(s) from layer {i} to layer {target}, {remainder} loose remain")

        return normalized

    def max_loose(self, layers: Sequence[PackagingLayer], index: int) -> Optional[int]:
        """Largest loose count a non-master layer may show. None for master/measurement."""
        if index <= 0 or index >= len(layers) or layers[index].is_measurement:
            return None
        return max(0, coerce_quantity(layers[index].quantity) - 1)

    def clamp_loose_stock(self, layers: Sequence[PackagingLayer], index: int, value: Any) -> Optional[int]:
        """
        Entry-time validation for a loose stock field.

        Master: any non-negative count. Other countable layers: clamped to
        [0, quantity-1]. Over-range values are clamped, not rejected.
        Measurement layers hold no stock (None).
        """
        if index < 0 or index >= len(layers) or layers[index].is_measurement:
            return None
        count = coerce_stock(value)
        limit = self.max_loose(layers, index)
        if limit is None:
            return count
        return min(count, limit)

    def total_pieces_in_stock(self, layers: Sequence[PackagingLayer], stock: Optional[Mapping[Any, Any]]) -> int:
        """Roll every countable layer's tally down to innermost pieces."""
        last = len(layers) - 1
        total = 0
        for index, count in coerce_stock_map(stock).items():
            if index > last or layers[index].is_measurement:
                continue
            multiplier = 1 if index == last else self.cumulative_qty_up_to(layers, index)
            total += count * multiplier
        return total

    def display_unit(self, layers: Sequence[PackagingLayer]) -> str:
        for layer in reversed(layers):
            if not layer.is_measurement:
                return layer.unit
        return DEFAULT_RETAIL_UNIT

    def stock_summary(self, layers: Sequence[PackagingLayer], stock: Optional[Mapping[Any, Any]]) -> StockSummary:
        return StockSummary(
            total_pieces=self.total_pieces_in_stock(layers, stock),
            display_unit=self.display_unit(layers),
        )

    def stock_from_pieces(self, layers: Sequence[PackagingLayer], pieces: Any) -> Dict[int, int]:
        """Express a piece total as a normalized stock map over `layers`."""
        countable = self.countable_indices(layers)
        if not countable:
            return {}
        return self.normalize_stock(layers, {countable[-1]: coerce_stock(pieces)})

    def apply_replenishment(
        self,
        layers: Sequence[PackagingLayer],
        stock: Optional[Mapping[Any, Any]],
        quantity: Any,
        layer_index: int = 0,
    ) -> Dict[int, int]:
        """Add `quantity` units at one countable layer, then re-normalize."""
        added = parse_int(quantity)
        if added is None or added <= 0:
            raise InvalidReplenishQuantityError(quantity)
        if layer_index < 0 or layer_index >= len(layers):
            raise LayerIndexError(layer_index, "out of range")
        if layers[layer_index].is_measurement:
            raise LayerIndexError(layer_index, f"{layers[layer_index].unit} is a measurement unit")

        updated = coerce_stock_map(stock)
        updated[layer_index] = updated.get(layer_index, 0) + added
        logger.info(f"Replenished {added} {layers[layer_index].unit} at layer {layer_index}")
        return self.normalize_stock(layers, updated)
