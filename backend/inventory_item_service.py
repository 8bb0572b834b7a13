# backend/inventory_item_service.py

"""
Inventory Item Service - edit session, save payload and item persistence

PackagingEditSession holds the in-progress state of one add/edit form:
layers, per-layer prices, per-layer loose stock, buying price and the
auto-calculate toggle. Every mutating call recomputes derived state
(auto prices when enabled, then the stock carry) and commits only when the
serialized state actually changed.

InventoryItemService is the thin persistence adapter that turns a finished
session into the inventory payload and writes it (create / update /
replenish).
"""

import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from packaging_engine import (
    DEFAULT_MASTER_UNIT,
    DEFAULT_RETAIL_UNIT,
    CountableLayer,
    LayerIndexError,
    LayerRole,
    MeasurementLayer,
    PackagingEngine,
    PackagingError,
    PackagingLayer,
    PersistedLayer,
    StockSummary,
    build_layers,
    coerce_price,
    coerce_stock,
    coerce_stock_map,
    default_layers,
    is_measurement_unit,
    normalize_unit_label,
    parse_int,
)
from pricing_engine import (
    ItemProfit,
    PricingEngine,
    coerce_price_map,
    minimum_price,
    round_money,
)
from supplier_parser import SupplierParseResult

logger = logging.getLogger(__name__)

DEFAULT_LOW_STOCK_ALERT = 10
DEFAULT_SUPPLIER = "Unknown Supplier"

# ==================== ERRORS ====================

class ItemNotFoundError(PackagingError):
    """Inventory item does not exist"""
    def __init__(self, item_id: str):
        super().__init__(
            "ITEM_NOT_FOUND",
            f"Inventory item '{item_id}' not found.",
            field="id",
        )


# ==================== MODELS ====================

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LayerView(_CamelModel):
    """Read model for one layer card"""
    index: int
    role: LayerRole
    unit: str
    quantity: Union[int, float]
    is_measurement: bool
    cumulative_qty: int
    selling_price: Optional[float] = None
    profit_per_piece: Optional[float] = None
    max_loose: Optional[int] = None
    stock: Optional[int] = None


class ItemDetails(_CamelModel):
    """Non-packaging fields of the inventory form"""
    product_name: str
    category: str = "misc"
    supplier: str = DEFAULT_SUPPLIER
    invoice_id: str = Field(min_length=1)
    warehouse_id: Optional[str] = ""
    warehouse_name: Optional[str] = ""
    low_stock_alert: Any = 5

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "ItemDetails":
        return cls(
            product_name=item.get("productName") or "",
            category=item.get("category") or "misc",
            supplier=item.get("supplier") or DEFAULT_SUPPLIER,
            invoice_id=item.get("invoiceId") or "-",
            warehouse_id=item.get("warehouseId") or "",
            warehouse_name=item.get("warehouseName") or "",
            low_stock_alert=item.get("lowStockAlert"),
        )


class InventoryItemPayload(_CamelModel):
    """Payload handed to the inventory create/update/replenish operations"""
    product_name: str
    category: str
    supplier: str
    invoice_id: str
    warehouse_id: Optional[str] = ""
    warehouse_name: Optional[str] = ""
    buying_price: float
    buying_price_per_unit: float
    selling_price: float
    selling_price_per_piece: float
    minimum_price: float
    stock: int
    stock_in_supplier_units: int
    unit: str
    supplier_unit: str
    supplier_unit_quantity: int
    low_stock_alert: int
    packaging_structure: List[PersistedLayer]


class InventoryItemRequest(ItemDetails):
    """Add/edit form submission"""
    buying_price_per_unit: Any = None
    packaging_structure: List[Dict[str, Any]] = Field(default_factory=list)
    layer_prices: Dict[str, Any] = Field(default_factory=dict)
    layer_stock: Dict[str, Any] = Field(default_factory=dict)
    auto_calc_enabled: bool = False


class ReplenishRequest(_CamelModel):
    invoice_id: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    buying_price: Optional[float] = None
    layer_index: int = 0
    notes: Optional[str] = None


# ==================== EDIT SESSION ====================

def _shape_only(layer: PackagingLayer) -> PackagingLayer:
    if layer.is_measurement:
        return MeasurementLayer(quantity=layer.quantity, unit=layer.unit)
    return CountableLayer(quantity=layer.quantity, unit=layer.unit)


def _raw_layers(layers: Sequence[PackagingLayer]) -> List[Dict[str, Any]]:
    return [{"qty": layer.quantity, "unit": layer.unit} for layer in layers]


def legacy_layers(item: Mapping[str, Any]) -> List[PackagingLayer]:
    """
    Layers for an item stored without packagingStructure.

    Rebuilt from supplierUnit / supplierUnitQuantity / sellingPricePerPiece
    so a re-save keeps the stored prices and pieces per master.
    """
    unit = normalize_unit_label(item.get("supplierUnit") or item.get("unit"))
    if not unit or is_measurement_unit(unit):
        unit = DEFAULT_MASTER_UNIT
    pieces = parse_int(item.get("supplierUnitQuantity"))
    per_piece = coerce_price(item.get("sellingPricePerPiece", item.get("sellingPrice")))

    if not pieces or pieces <= 1:
        return build_layers([{"qty": 1, "unit": unit, "sellingPrice": per_piece}])

    master_price = round_money(per_piece * pieces) if per_piece else None
    return build_layers([
        {"qty": 1, "unit": unit, "sellingPrice": master_price},
        {"qty": pieces, "unit": DEFAULT_RETAIL_UNIT, "sellingPrice": per_piece},
    ])


class PackagingEditSession:
    """
    One in-progress packaging edit.

    While auto-calculate is on, the master price is the only price that
    drives derived layers; derived layers are rewritten from it on every
    recompute.
    """

    def __init__(
        self,
        layers: Optional[Sequence[Any]] = None,
        prices: Optional[Mapping[Any, Any]] = None,
        stock: Optional[Mapping[Any, Any]] = None,
        buying_price_per_unit: Any = None,
        auto_calc_enabled: bool = False,
        packaging: Optional[PackagingEngine] = None,
        pricing: Optional[PricingEngine] = None,
    ):
        self.packaging = packaging or PackagingEngine()
        self.pricing = pricing or PricingEngine(self.packaging)
        self.layers: List[PackagingLayer] = []
        self.prices: Dict[int, Optional[float]] = {}
        self.stock: Dict[int, int] = {}
        self.buying_price_per_unit: Optional[float] = None
        self.auto_calc_enabled = False
        self.revision = 0
        self._snapshot: Optional[Dict[str, Any]] = None

        self._commit(
            build_layers(layers) if layers else default_layers(),
            coerce_price_map(prices),
            coerce_stock_map(stock),
            coerce_price(buying_price_per_unit),
            auto_calc_enabled,
        )

    @classmethod
    def from_item(cls, item: Mapping[str, Any], auto_calc_enabled: bool = False) -> "PackagingEditSession":
        """Session seeded from a persisted inventory item."""
        raw_layers = item.get("packagingStructure") or []
        layers = build_layers(raw_layers) if raw_layers else legacy_layers(item)
        prices = {}
        stock = {}
        for i, layer in enumerate(layers):
            if layer.is_measurement:
                continue
            prices[i] = layer.selling_price
            stock[i] = layer.stock or 0
        if not raw_layers:
            # items saved before packaging layers existed only carry supplier-unit stock
            stock[0] = coerce_stock(item.get("stockInSupplierUnits", item.get("stock")))
        return cls(
            layers=_raw_layers(layers),
            prices=prices,
            stock=stock,
            buying_price_per_unit=item.get("buyingPricePerUnit"),
            auto_calc_enabled=auto_calc_enabled,
        )

    # ---------- recompute / commit ----------

    def _serialize(self, layers, prices, stock, buying, auto) -> Dict[str, Any]:
        return {
            "layers": [(layer.kind, layer.quantity, layer.unit) for layer in layers],
            "prices": dict(sorted(prices.items())),
            "stock": dict(sorted(stock.items())),
            "buying": buying,
            "auto": auto,
        }

    def _commit(self, layers, prices, stock, buying, auto) -> bool:
        layers = [_shape_only(layer) for layer in layers]
        if auto:
            prices = self.pricing.auto_calculate_prices(layers, prices)
        prices = {
            i: p for i, p in prices.items()
            if i < len(layers) and not layers[i].is_measurement
        }
        stock = self.packaging.normalize_stock(layers, stock)

        snapshot = self._serialize(layers, prices, stock, buying, auto)
        if snapshot == self._snapshot:
            return False

        self.layers = layers
        self.prices = prices
        self.stock = stock
        self.buying_price_per_unit = buying
        self.auto_calc_enabled = auto
        self._snapshot = snapshot
        self.revision += 1
        return True

    def _commit_changes(self, **changes) -> bool:
        return self._commit(
            changes.get("layers", self.layers),
            changes.get("prices", dict(self.prices)),
            changes.get("stock", dict(self.stock)),
            changes.get("buying", self.buying_price_per_unit),
            changes.get("auto", self.auto_calc_enabled),
        )

    def _require_countable(self, index: int) -> None:
        if index < 0 or index >= len(self.layers):
            raise LayerIndexError(index, "out of range")
        if self.layers[index].is_measurement:
            raise LayerIndexError(index, f"{self.layers[index].unit} is a measurement unit")

    # ---------- structure edits ----------

    def set_layers(self, raw_layers: Sequence[Any]) -> bool:
        """Replace the whole layer list; prices and stock stay keyed by index."""
        return self._commit_changes(layers=build_layers(raw_layers))

    def add_layer(self, quantity: Any = "", unit: str = "PCS") -> bool:
        raw = _raw_layers(self.layers) + [{"qty": quantity, "unit": unit}]
        return self._commit_changes(layers=build_layers(raw))

    def remove_layer(self, index: int) -> bool:
        """Drop an inner layer. The master layer stays."""
        if index <= 0 or index >= len(self.layers):
            raise LayerIndexError(index, "only inner layers can be removed")

        def shift(values: Mapping[int, Any]) -> Dict[int, Any]:
            return {
                (i if i < index else i - 1): v
                for i, v in values.items() if i != index
            }

        raw = [r for i, r in enumerate(_raw_layers(self.layers)) if i != index]
        return self._commit_changes(
            layers=build_layers(raw),
            prices=shift(self.prices),
            stock=shift(self.stock),
        )

    def update_layer(self, index: int, field: str, value: Any) -> bool:
        """Edit a layer's qty or unit. The master quantity is fixed at 1."""
        if index < 0 or index >= len(self.layers):
            raise LayerIndexError(index, "out of range")
        if field not in ("qty", "unit"):
            raise PackagingError("INVALID_LAYER_FIELD", f"Unknown layer field '{field}'", field=field)
        if index == 0 and field == "qty":
            return False

        raw = _raw_layers(self.layers)
        raw[index][field] = normalize_unit_label(value) if field == "unit" else value
        return self._commit_changes(layers=build_layers(raw))

    def apply_parsed_item(self, parsed: SupplierParseResult) -> bool:
        """Merge a supplier-string guess: its layers (if any) and a missing buying price."""
        raw = parsed.to_layers()
        buying = self.buying_price_per_unit or coerce_price(parsed.buying_price_per_unit)
        if raw:
            return self._commit_changes(layers=build_layers(raw), buying=buying)
        return self._commit_changes(buying=buying)

    # ---------- price / stock edits ----------

    def set_layer_price(self, index: int, value: Any) -> bool:
        self._require_countable(index)
        prices = dict(self.prices)
        prices[index] = coerce_price(value)
        return self._commit_changes(prices=prices)

    def set_layer_stock(self, index: int, value: Any, clamp: bool = False) -> bool:
        """
        Set a loose stock tally; overflow is carried to the layers above.
        With clamp on, inner layers are capped at quantity-1 instead.
        """
        self._require_countable(index)
        stock = dict(self.stock)
        stock[index] = self.packaging.clamp_loose_stock(self.layers, index, value) if clamp else coerce_stock(value)
        return self._commit_changes(stock=stock)

    def replace_stock(self, stock: Mapping[Any, Any]) -> bool:
        return self._commit_changes(stock=coerce_stock_map(stock))

    def set_buying_price(self, value: Any) -> bool:
        return self._commit_changes(buying=coerce_price(value))

    def toggle_auto_calc(self) -> bool:
        return self._commit_changes(auto=not self.auto_calc_enabled)

    # ---------- read side ----------

    @property
    def total_pieces_per_master(self) -> int:
        return self.packaging.total_pieces_per_master(self.layers)

    def stock_summary(self) -> StockSummary:
        return self.packaging.stock_summary(self.layers, self.stock)

    def layer_views(self) -> List[LayerView]:
        views = []
        for i, layer in enumerate(self.layers):
            price = None if layer.is_measurement else self.prices.get(i)
            views.append(LayerView(
                index=i,
                role=self.packaging.layer_role(self.layers, i),
                unit=layer.unit,
                quantity=layer.quantity,
                is_measurement=layer.is_measurement,
                cumulative_qty=self.packaging.cumulative_qty_up_to(self.layers, i),
                selling_price=price,
                profit_per_piece=self.pricing.profit_per_piece(self.layers, i, price, self.buying_price_per_unit),
                max_loose=self.packaging.max_loose(self.layers, i),
                stock=None if layer.is_measurement else self.stock.get(i, 0),
            ))
        return views


# ==================== SAVE PAYLOAD ====================

def _whole(quantity: Union[int, float]) -> Union[int, float]:
    return int(quantity) if float(quantity).is_integer() else quantity


def build_save_payload(session: PackagingEditSession, details: ItemDetails) -> InventoryItemPayload:
    """Flatten a session plus form details into the inventory payload."""
    layers = session.layers
    retail_index = session.packaging.innermost_priced_index(layers)
    selling_price = session.prices.get(retail_index) or 0.0
    buying_price = session.buying_price_per_unit or 0.0
    master_stock = session.stock.get(0, 0)
    master_unit = layers[0].unit

    structure = []
    for i, layer in enumerate(layers):
        if layer.is_measurement:
            structure.append(PersistedLayer(qty=_whole(layer.quantity), unit=layer.unit))
        else:
            structure.append(PersistedLayer(
                qty=layer.quantity,
                unit=layer.unit,
                selling_price=session.prices.get(i),
                stock=session.stock.get(i, 0),
            ))

    return InventoryItemPayload(
        product_name=details.product_name,
        category=details.category,
        supplier=details.supplier,
        invoice_id=details.invoice_id,
        warehouse_id=details.warehouse_id,
        warehouse_name=details.warehouse_name,
        buying_price=buying_price,
        buying_price_per_unit=buying_price,
        selling_price=selling_price,
        selling_price_per_piece=selling_price,
        minimum_price=minimum_price(selling_price),
        stock=master_stock,
        stock_in_supplier_units=master_stock,
        unit=master_unit,
        supplier_unit=master_unit,
        supplier_unit_quantity=session.total_pieces_per_master,
        low_stock_alert=parse_int(details.low_stock_alert) or DEFAULT_LOW_STOCK_ALERT,
        packaging_structure=structure,
    )


# ==================== PERSISTENCE ====================

class InventoryItemService:
    """Inventory create / update / replenish over the `inventory` collection"""

    def __init__(self, db, pricing: Optional[PricingEngine] = None):
        self.db = db
        self.pricing = pricing or PricingEngine()

    def session_from_request(self, request: InventoryItemRequest) -> PackagingEditSession:
        return PackagingEditSession(
            layers=request.packaging_structure or None,
            prices=request.layer_prices,
            stock=request.layer_stock,
            buying_price_per_unit=request.buying_price_per_unit,
            auto_calc_enabled=request.auto_calc_enabled,
        )

    def profit(self, item: Mapping[str, Any]) -> ItemProfit:
        return self.pricing.item_profit(item)

    async def get_item(self, item_id: str) -> Dict[str, Any]:
        item = await self.db.inventory.find_one({"id": item_id}, {"_id": 0})
        if not item:
            raise ItemNotFoundError(item_id)
        return item

    async def create_item(self, request: InventoryItemRequest) -> Dict[str, Any]:
        session = self.session_from_request(request)
        payload = build_save_payload(session, request)
        now = datetime.now(timezone.utc).isoformat()

        item = payload.model_dump(by_alias=True)
        item.update({"id": str(uuid.uuid4()), "createdAt": now, "updatedAt": now})
        await self.db.inventory.insert_one(copy.deepcopy(item))
        logger.info(f"Created inventory item {item['id']} ({item['productName']}), {item['supplierUnitQuantity']} pcs per {item['supplierUnit']}")
        return item

    async def update_item(self, item_id: str, request: InventoryItemRequest) -> Dict[str, Any]:
        """
        Replace the item's packaging wholesale with the edited session.

        Without edited stock in the request, the stored stock is carried over
        as a piece total and re-expressed in the new structure.
        """
        existing = await self.get_item(item_id)
        session = self.session_from_request(request)

        if not coerce_stock_map(request.layer_stock):
            stored = PackagingEditSession.from_item(existing)
            pieces = stored.stock_summary().total_pieces
            session.replace_stock(session.packaging.stock_from_pieces(session.layers, pieces))
            logger.debug(f"Carried {pieces} stored pieces into the edited structure of {item_id}")

        payload = build_save_payload(session, request)

        changes = payload.model_dump(by_alias=True)
        changes["updatedAt"] = datetime.now(timezone.utc).isoformat()
        await self.db.inventory.update_one({"id": item_id}, {"$set": changes})
        logger.info(f"Updated inventory item {item_id}")
        return {**existing, **changes}

    async def replenish_item(self, item_id: str, request: ReplenishRequest) -> Dict[str, Any]:
        """Add stock at one layer (re-normalized) and log a stock movement."""
        existing = await self.get_item(item_id)
        session = PackagingEditSession.from_item(existing)
        pieces_before = session.stock_summary().total_pieces

        new_stock = session.packaging.apply_replenishment(
            session.layers, session.stock, request.quantity, request.layer_index
        )
        session.replace_stock(new_stock)
        if request.buying_price:
            session.set_buying_price(request.buying_price)

        payload = build_save_payload(session, ItemDetails.from_item(existing))
        changes = payload.model_dump(by_alias=True, exclude={"invoice_id", "product_name", "category", "supplier", "warehouse_id", "warehouse_name"})
        now = datetime.now(timezone.utc).isoformat()
        changes["updatedAt"] = now
        await self.db.inventory.update_one({"id": item_id}, {"$set": changes})

        movement = {
            "id": str(uuid.uuid4()),
            "itemId": item_id,
            "invoiceId": request.invoice_id,
            "type": "replenish",
            "layerIndex": request.layer_index,
            "unit": session.layers[request.layer_index].unit,
            "quantity": request.quantity,
            "piecesAdded": session.stock_summary().total_pieces - pieces_before,
            "buyingPrice": session.buying_price_per_unit,
            "notes": request.notes,
            "createdAt": now,
        }
        await self.db.stock_movements.insert_one(copy.deepcopy(movement))
        logger.info(f"Replenished item {item_id}: +{request.quantity} {movement['unit']} ({movement['piecesAdded']} pcs)")
        return {**existing, **changes}
