# backend/pricing_engine.py

"""
Pricing Engine - Per-layer selling prices and profit

Two modes:
- Manual: every countable layer carries its own selling price; only
  profit per piece is derived.
- Auto-calculate: the master layer's price is the single source of truth and
  every other countable layer is derived from it.

Profit that lacks inputs is None, never 0, so callers can tell "no data"
from "zero profit".

Money is rounded to 2 decimals with ROUND_HALF_UP.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from packaging_engine import (
    PackagingEngine,
    PackagingLayer,
    coerce_price,
    parse_int,
)

logger = logging.getLogger(__name__)

MINIMUM_PRICE_RATIO = Decimal("0.9")
MONEY_PLACES = Decimal("0.01")


def round_money(value: float) -> float:
    return float(Decimal(str(value)).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP))


def minimum_price(selling_price: Any) -> float:
    """Floor price offered to sales: 90% of the retail selling price."""
    price = coerce_price(selling_price) or 0.0
    return float((Decimal(str(price)) * MINIMUM_PRICE_RATIO).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP))


def coerce_price_map(prices: Optional[Mapping[Any, Any]]) -> Dict[int, Optional[float]]:
    result: Dict[int, Optional[float]] = {}
    for key, value in (prices or {}).items():
        index = parse_int(key)
        if index is None or index < 0:
            continue
        result[index] = coerce_price(value)
    return result


class ItemProfit(BaseModel):
    """Profit read model for a saved inventory item"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    profit_per_piece: Optional[float] = None
    profit_margin_percent: Optional[int] = None
    profit_per_master_unit: Optional[float] = None


class PricingEngine:
    """Stateless price propagation over a packaging layer list."""

    def __init__(self, packaging: Optional[PackagingEngine] = None):
        self.packaging = packaging or PackagingEngine()

    def profit_per_piece(
        self,
        layers: Sequence[PackagingLayer],
        index: int,
        price: Any,
        buying_price_per_unit: Any,
    ) -> Optional[float]:
        """
        Manual-mode profit for one layer, per innermost piece.

        selling per piece = price (retail layer) or price / pieces in the layer
        buying per piece  = buying price per master / pieces per master

        Returns None when the layer is a measurement or when the price or
        buying price is missing/zero.
        """
        if index < 0 or index >= len(layers) or layers[index].is_measurement:
            return None

        selling = coerce_price(price)
        buying = coerce_price(buying_price_per_unit)
        cumulative_qty = self.packaging.cumulative_qty_up_to(layers, index)
        total_pieces = self.packaging.total_pieces_per_master(layers)
        if not selling or not buying or cumulative_qty <= 0 or total_pieces <= 0:
            return None

        is_innermost = index == len(layers) - 1
        selling_per_piece = selling if is_innermost else selling / (cumulative_qty or 1)
        buying_per_piece = buying / (total_pieces or 1)
        return round_money(selling_per_piece - buying_per_piece)

    def auto_calculate_prices(
        self,
        layers: Sequence[PackagingLayer],
        prices: Optional[Mapping[Any, Any]],
    ) -> Dict[int, Optional[float]]:
        """
        Derive every non-master countable price from the master price.

        Retail layer gets the per-piece price, inner packs get per-piece price
        times the pieces they hold. No master price (or a single layer) leaves
        the map untouched.
        """
        current = coerce_price_map(prices)
        master_price = current.get(0)
        if not master_price or len(layers) <= 1:
            return current

        total_pieces = self.packaging.total_pieces_per_master(layers) or 1
        selling_per_piece = master_price / total_pieces
        last = len(layers) - 1

        derived = dict(current)
        for i in range(1, len(layers)):
            if layers[i].is_measurement:
                continue
            if i == last:
                derived[i] = round_money(selling_per_piece)
            else:
                derived[i] = round_money(selling_per_piece * self.packaging.cumulative_qty_up_to(layers, i))

        logger.debug(f"Auto-calculated prices from master {master_price} over {total_pieces} pieces: {derived}")
        return derived

    def profit_per_master_unit(
        self,
        master_selling_price: Any,
        selling_price_per_piece: Any,
        supplier_unit_quantity: Any,
        buying_price_per_unit: Any,
    ) -> Optional[float]:
        """
        Profit on one whole master unit.

        Uses the master layer's own price when set, else the retail price
        times pieces per master. None when either side is unknown.
        """
        unit_price = coerce_price(master_selling_price)
        if unit_price is None:
            per_piece = coerce_price(selling_price_per_piece)
            quantity = parse_int(supplier_unit_quantity)
            if per_piece and quantity and quantity > 0:
                unit_price = per_piece * quantity

        buying = coerce_price(buying_price_per_unit)
        if unit_price is None or buying is None:
            return None
        return round_money(unit_price - buying)

    def item_profit(self, item: Mapping[str, Any]) -> ItemProfit:
        """Profit figures for a persisted item payload (camelCase keys)."""
        buying = coerce_price(item.get("buyingPricePerUnit"))
        per_piece = coerce_price(item.get("sellingPricePerPiece"))
        quantity = parse_int(item.get("supplierUnitQuantity"))

        profit_per_piece = None
        margin = None
        if buying and per_piece and quantity and quantity > 0:
            cost_per_piece = buying / quantity
            raw_profit = per_piece - cost_per_piece
            profit_per_piece = round_money(raw_profit)
            margin = int(Decimal(str(raw_profit / cost_per_piece * 100)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

        structure = item.get("packagingStructure") or []
        master_price = structure[0].get("sellingPrice") if structure and isinstance(structure[0], Mapping) else None

        return ItemProfit(
            profit_per_piece=profit_per_piece,
            profit_margin_percent=margin,
            profit_per_master_unit=self.profit_per_master_unit(master_price, per_piece, quantity, buying),
        )
