# backend/tests/conftest.py

import copy
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


class MockCursor:
    """Mock motor cursor"""
    def __init__(self, docs):
        self.docs = docs

    async def to_list(self, length=None):
        docs = self.docs if length is None else self.docs[:length]
        return [copy.deepcopy(doc) for doc in docs]


class MockCollection:
    """Mock MongoDB collection keyed on plain equality queries"""
    def __init__(self):
        self.docs = []

    @staticmethod
    def _matches(doc, query):
        return all(doc.get(key) == value for key, value in (query or {}).items())

    async def insert_one(self, doc):
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc.get("id"))

    async def find_one(self, query, projection=None):
        for doc in self.docs:
            if self._matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def find(self, query=None, projection=None):
        return MockCursor([doc for doc in self.docs if self._matches(doc, query)])

    async def update_one(self, query, update):
        for doc in self.docs:
            if self._matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)


class MockDB:
    """Mock MongoDB database"""
    def __init__(self):
        self.inventory = MockCollection()
        self.stock_movements = MockCollection()


@pytest.fixture
def mock_db():
    return MockDB()


@pytest.fixture
def three_layer_item():
    """Persisted item: 1 BOX = 10 PACKS = 240 PCS, bought at 4800 per box"""
    return {
        "id": "ITEM-1",
        "productName": "Biscuits",
        "category": "snacks",
        "supplier": "Acme Distributors",
        "invoiceId": "INV-1",
        "warehouseId": "WH-1",
        "warehouseName": "Main",
        "buyingPricePerUnit": 4800,
        "buyingPrice": 4800,
        "sellingPrice": 25,
        "sellingPricePerPiece": 25,
        "stock": 2,
        "stockInSupplierUnits": 2,
        "supplierUnit": "BOXES",
        "supplierUnitQuantity": 240,
        "lowStockAlert": 5,
        "packagingStructure": [
            {"qty": 1, "unit": "BOXES", "sellingPrice": 6000, "stock": 2},
            {"qty": 10, "unit": "PACKS", "sellingPrice": 600, "stock": 3},
            {"qty": 24, "unit": "PCS", "sellingPrice": 25, "stock": 5},
        ],
    }
