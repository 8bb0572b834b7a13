# backend/tests/test_packaging_engine.py

"""
Unit tests for Packaging Engine

Tests cover:
- Measurement unit classification
- Layer building from loosely typed input
- Cumulative quantity (incl. measurement transparency)
- Stock normalization (multi-level carry, idempotence)
- Loose stock clamping
- Stock roll-up and replenishment
"""

import pytest

from packaging_engine import (
    CountableLayer,
    EmptyPackagingStructureError,
    InvalidReplenishQuantityError,
    LayerIndexError,
    LayerRole,
    MeasurementLayer,
    PackagingEngine,
    ProductPackagingRecord,
    build_layers,
    default_layers,
    is_measurement_unit,
)


@pytest.fixture
def engine():
    return PackagingEngine()


@pytest.fixture
def box_pack_pcs():
    """1 BOX = 10 PACKS, 1 PACK = 24 PCS"""
    return build_layers([
        {"qty": 1, "unit": "BOXES"},
        {"qty": 10, "unit": "PACKS"},
        {"qty": 24, "unit": "PCS"},
    ])


@pytest.fixture
def carton_with_grams():
    """1 CTN = 24 PCS of 200 G each"""
    return build_layers([
        {"qty": 1, "unit": "CTN"},
        {"qty": 24, "unit": "PCS"},
        {"qty": 200, "unit": "G"},
    ])


class TestMeasurementClassification:
    """Test countable vs measurement units"""

    @pytest.mark.parametrize("unit", ["KG", "kgs", " g ", "GM", "Gms", "gram", "GRAMS", "ml", "L", "ltr", "LTRS", "Litre", "litres"])
    def test_measurement_units(self, unit):
        assert is_measurement_unit(unit) is True

    @pytest.mark.parametrize("unit", ["PCS", "BOXES", "CTN", "KGBAG", "LITER", "MT", ""])
    def test_countable_units(self, unit):
        assert is_measurement_unit(unit) is False

    def test_none_is_not_measurement(self):
        assert is_measurement_unit(None) is False


class TestBuildLayers:
    """Test raw layer input coercion"""

    def test_tagged_union(self, carton_with_grams):
        assert isinstance(carton_with_grams[0], CountableLayer)
        assert isinstance(carton_with_grams[1], CountableLayer)
        assert isinstance(carton_with_grams[2], MeasurementLayer)
        assert carton_with_grams[2].kind == "measurement"

    def test_master_quantity_forced_to_one(self):
        layers = build_layers([{"qty": 5, "unit": "CTN"}, {"qty": 24, "unit": "PCS"}])
        assert layers[0].quantity == 1

    def test_garbage_quantities_count_as_one(self):
        layers = build_layers([
            {"qty": "1", "unit": "ctn"},
            {"qty": "abc", "unit": "pcs"},
            {"qty": "0", "unit": "packs"},
            {"qty": "-4", "unit": "trays"},
            {"qty": "12x", "unit": "PCS"},
        ])
        assert [layer.quantity for layer in layers] == [1, 1, 1, 1, 12]
        assert [layer.unit for layer in layers] == ["CTN", "PCS", "PACKS", "TRAYS", "PCS"]

    def test_prices_and_stock_carried_on_countable_layers(self):
        layers = build_layers([
            {"qty": 1, "unit": "CTN", "sellingPrice": "1200", "stock": "3"},
            {"qty": 24, "unit": "PCS", "sellingPrice": "", "stock": None},
            {"qty": 0.5, "unit": "KG", "sellingPrice": 10, "stock": 4},
        ])
        assert layers[0].selling_price == 1200.0
        assert layers[0].stock == 3
        assert layers[1].selling_price is None
        assert layers[1].stock is None
        assert layers[2].quantity == 0.5
        assert not hasattr(layers[2], "selling_price")

    def test_empty_structure_error(self):
        with pytest.raises(EmptyPackagingStructureError) as exc_info:
            build_layers([])
        assert exc_info.value.error_code == "EMPTY_PACKAGING_STRUCTURE"

    def test_default_layers(self):
        layers = default_layers()
        assert len(layers) == 1
        assert layers[0].unit == "BOXES"

    def test_record_from_payload(self):
        record = ProductPackagingRecord.from_payload({
            "buyingPricePerUnit": "900",
            "packagingStructure": [{"qty": 1, "unit": "CTN"}, {"qty": 24, "unit": "PCS"}],
        })
        assert record.buying_price_per_unit == 900.0
        assert len(record.layers) == 2


class TestCumulativeQuantity:
    """Test piece counts below a layer"""

    @pytest.mark.parametrize("quantities", [[1, 24], [1, 10, 24], [1, 2, 3, 4, 5], [1]])
    def test_countable_chain(self, engine, quantities):
        layers = build_layers([{"qty": q, "unit": "PACKS"} for q in quantities])
        expected = 1
        for q in quantities[1:]:
            expected *= q
        assert engine.cumulative_qty_up_to(layers, 0) == expected
        assert engine.cumulative_qty_up_to(layers, len(layers) - 1) == 1

    def test_inner_layer(self, engine, box_pack_pcs):
        assert engine.cumulative_qty_up_to(box_pack_pcs, 0) == 240
        assert engine.cumulative_qty_up_to(box_pack_pcs, 1) == 24
        assert engine.cumulative_qty_up_to(box_pack_pcs, 2) == 1
        assert engine.total_pieces_per_master(box_pack_pcs) == 240

    def test_out_of_range_index(self, engine, box_pack_pcs):
        assert engine.cumulative_qty_up_to(box_pack_pcs, 3) == 1
        assert engine.cumulative_qty_up_to(box_pack_pcs, -1) == 1

    def test_measurement_layer_is_transparent(self, engine):
        without = build_layers([
            {"qty": 1, "unit": "CTN"},
            {"qty": 6, "unit": "PACKS"},
            {"qty": 4, "unit": "PCS"},
        ])
        with_grams = build_layers([
            {"qty": 1, "unit": "CTN"},
            {"qty": 6, "unit": "PACKS"},
            {"qty": 250, "unit": "GM"},
            {"qty": 4, "unit": "PCS"},
        ])
        # index map: without[i] <-> with_grams[0, 1, 3]
        for i, j in [(0, 0), (1, 1), (2, 3)]:
            assert engine.cumulative_qty_up_to(without, i) == engine.cumulative_qty_up_to(with_grams, j)

    def test_does_not_mutate(self, engine, box_pack_pcs):
        before = [layer.model_dump() for layer in box_pack_pcs]
        engine.cumulative_qty_up_to(box_pack_pcs, 0)
        engine.cumulative_qty_up_to(box_pack_pcs, 0)
        assert [layer.model_dump() for layer in box_pack_pcs] == before

    def test_roles_and_retail_index(self, engine, carton_with_grams):
        assert engine.layer_role(carton_with_grams, 0) == LayerRole.MASTER
        assert engine.layer_role(carton_with_grams, 1) == LayerRole.INNER
        assert engine.layer_role(carton_with_grams, 2) == LayerRole.RETAIL
        assert engine.innermost_priced_index(carton_with_grams) == 1


class TestStockNormalization:
    """Test mixed-radix carry of loose stock"""

    def test_multi_level_cascade(self, engine, box_pack_pcs):
        result = engine.normalize_stock(box_pack_pcs, {0: 0, 1: 0, 2: 250})
        assert result == {0: 1, 1: 0, 2: 10}

    def test_idempotent(self, engine, box_pack_pcs):
        once = engine.normalize_stock(box_pack_pcs, {0: 3, 1: 27, 2: 1000})
        twice = engine.normalize_stock(box_pack_pcs, once)
        assert once == twice

    def test_no_overflow_after_normalization(self, engine, box_pack_pcs):
        result = engine.normalize_stock(box_pack_pcs, {1: 99, 2: 9999})
        for i in (1, 2):
            assert result[i] < box_pack_pcs[i].quantity

    def test_master_never_capped(self, engine, box_pack_pcs):
        result = engine.normalize_stock(box_pack_pcs, {0: 5000, 2: 24})
        assert result == {0: 5000, 1: 1, 2: 0}

    def test_string_keys_and_garbage(self, engine, box_pack_pcs):
        result = engine.normalize_stock(box_pack_pcs, {"0": "1", "1": "abc", "2": "-3"})
        assert result == {0: 1, 1: 0, 2: 0}

    def test_measurement_innermost_skipped(self, engine, carton_with_grams):
        result = engine.normalize_stock(carton_with_grams, {1: 50})
        assert result == {0: 2, 1: 2}

    def test_carry_passes_through_measurement_layer(self, engine):
        layers = build_layers([
            {"qty": 1, "unit": "CTN"},
            {"qty": 6, "unit": "PACKS"},
            {"qty": 250, "unit": "GM"},
            {"qty": 4, "unit": "PCS"},
        ])
        result = engine.normalize_stock(layers, {3: 9})
        assert result == {0: 0, 1: 2, 3: 1}

    def test_input_not_mutated(self, engine, box_pack_pcs):
        stock = {0: 0, 1: 0, 2: 250}
        engine.normalize_stock(box_pack_pcs, stock)
        assert stock == {0: 0, 1: 0, 2: 250}


class TestLooseStockClamp:
    """Test entry-time clamping (separate from normalization)"""

    def test_max_loose(self, engine, box_pack_pcs, carton_with_grams):
        assert engine.max_loose(box_pack_pcs, 0) is None
        assert engine.max_loose(box_pack_pcs, 1) == 9
        assert engine.max_loose(box_pack_pcs, 2) == 23
        assert engine.max_loose(carton_with_grams, 2) is None

    def test_clamp_values(self, engine, box_pack_pcs):
        assert engine.clamp_loose_stock(box_pack_pcs, 2, 30) == 23
        assert engine.clamp_loose_stock(box_pack_pcs, 2, "7") == 7
        assert engine.clamp_loose_stock(box_pack_pcs, 2, -5) == 0
        assert engine.clamp_loose_stock(box_pack_pcs, 2, "abc") == 0
        assert engine.clamp_loose_stock(box_pack_pcs, 0, 500) == 500

    def test_clamp_measurement_layer(self, engine, carton_with_grams):
        assert engine.clamp_loose_stock(carton_with_grams, 2, 5) is None


class TestStockRollUp:
    """Test total pieces in stock"""

    def test_total_pieces(self, engine, box_pack_pcs):
        assert engine.total_pieces_in_stock(box_pack_pcs, {0: 1, 1: 3, 2: 5}) == 240 + 72 + 5

    def test_total_pieces_skips_measurement(self, engine, carton_with_grams):
        assert engine.total_pieces_in_stock(carton_with_grams, {0: 2, 1: 3, 2: 99}) == 51

    def test_roll_up_unchanged_by_normalization(self, engine, box_pack_pcs):
        stock = {0: 1, 1: 12, 2: 50}
        normalized = engine.normalize_stock(box_pack_pcs, stock)
        assert engine.total_pieces_in_stock(box_pack_pcs, stock) == engine.total_pieces_in_stock(box_pack_pcs, normalized)

    def test_stock_from_pieces(self, engine, box_pack_pcs, carton_with_grams):
        assert engine.stock_from_pieces(box_pack_pcs, 557) == {0: 2, 1: 3, 2: 5}
        assert engine.stock_from_pieces(carton_with_grams, 50) == {0: 2, 1: 2}
        assert engine.stock_from_pieces(box_pack_pcs, "abc") == {0: 0, 1: 0, 2: 0}

    def test_stock_from_pieces_round_trip(self, engine, box_pack_pcs):
        stock = {0: 4, 1: 17, 2: 99}
        pieces = engine.total_pieces_in_stock(box_pack_pcs, stock)
        assert engine.total_pieces_in_stock(box_pack_pcs, engine.stock_from_pieces(box_pack_pcs, pieces)) == pieces

    def test_summary_display_unit(self, engine, carton_with_grams):
        summary = engine.stock_summary(carton_with_grams, {0: 1})
        assert summary.total_pieces == 24
        assert summary.display_unit == "PCS"


class TestReplenishment:
    """Test adding stock at a layer"""

    def test_replenish_cascades(self, engine, box_pack_pcs):
        result = engine.apply_replenishment(box_pack_pcs, {0: 1, 1: 9, 2: 20}, 5, layer_index=2)
        assert result == {0: 2, 1: 0, 2: 1}

    def test_replenish_master(self, engine, box_pack_pcs):
        result = engine.apply_replenishment(box_pack_pcs, {0: 1}, 4)
        assert result == {0: 5, 1: 0, 2: 0}

    @pytest.mark.parametrize("quantity", [0, -3, "abc", None])
    def test_invalid_quantity(self, engine, box_pack_pcs, quantity):
        with pytest.raises(InvalidReplenishQuantityError):
            engine.apply_replenishment(box_pack_pcs, {}, quantity)

    def test_invalid_layer(self, engine, box_pack_pcs, carton_with_grams):
        with pytest.raises(LayerIndexError):
            engine.apply_replenishment(box_pack_pcs, {}, 1, layer_index=3)
        with pytest.raises(LayerIndexError) as exc_info:
            engine.apply_replenishment(carton_with_grams, {}, 1, layer_index=2)
        assert exc_info.value.error_code == "INVALID_LAYER_INDEX"
