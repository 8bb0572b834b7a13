"""
Script to re-normalize per-layer stock for every inventory item.

Older items can hold overflowing loose counts (e.g. 30 loose PCS when 24 make
a pack). This script runs the stock carry over each item's packaging layers
and rewrites packagingStructure[].stock, stock, stockInSupplierUnits and
supplierUnitQuantity where they changed.

Usage: python normalize_inventory_stock.py [--dry-run]
"""

import asyncio
import sys
import os
from pathlib import Path
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import ConnectionFailure
from dotenv import load_dotenv
import argparse

BACKEND_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(BACKEND_DIR))

from inventory_item_service import ItemDetails, PackagingEditSession, build_save_payload  # noqa: E402
from packaging_engine import PackagingError  # noqa: E402

load_dotenv(BACKEND_DIR / '.env')

MONGO_URI = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DATABASE_NAME = os.environ.get('DB_NAME', 'inventory_admin')

STOCK_FIELDS = ("packagingStructure", "stock", "stockInSupplierUnits", "supplierUnitQuantity")


def normalized_stock_fields(item):
    """Stock-related fields of `item` after normalization"""
    session = PackagingEditSession.from_item(item)
    payload = build_save_payload(session, ItemDetails.from_item(item)).model_dump(by_alias=True)
    return {field: payload[field] for field in STOCK_FIELDS}


async def normalize_inventory(db, dry_run=False):
    """Normalize every item with a packaging structure. Returns counters."""
    items = await db.inventory.find({}, {"_id": 0}).to_list(10000)
    print(f"\n📦 Found {len(items)} inventory items\n")

    summary = {"processed": 0, "updated": 0, "skipped": 0, "failed": 0}

    for item in items:
        item_id = item.get("id")
        name = item.get("productName", "Unknown")

        if not item.get("packagingStructure"):
            summary["skipped"] += 1
            continue

        try:
            fields = normalized_stock_fields(item)
        except PackagingError as e:
            print(f"❌ {name} ({item_id}): {e.message}")
            summary["failed"] += 1
            continue

        summary["processed"] += 1
        if all(item.get(field) == value for field, value in fields.items()):
            continue

        print(f"⚠️  {name} ({item_id}): stock {item.get('stock')} → {fields['stock']}")
        if dry_run:
            print("   [DRY RUN] Would update stock fields\n")
            continue

        fields["updatedAt"] = datetime.now(timezone.utc).isoformat()
        await db.inventory.update_one({"id": item_id}, {"$set": fields})
        summary["updated"] += 1
        print("   ✓ Updated\n")

    return summary


async def main(dry_run=False):
    try:
        client = AsyncIOMotorClient(MONGO_URI, serverSelectionTimeoutMS=5000)
        db = client[DATABASE_NAME]

        if dry_run:
            print("⚠️  DRY RUN MODE - No changes will be made\n")

        await client.admin.command('ping')
        print("✓ Connected to MongoDB")

        summary = await normalize_inventory(db, dry_run=dry_run)

        print("\n" + "=" * 80)
        print("NORMALIZATION SUMMARY")
        print("=" * 80)
        print(f"Items processed: {summary['processed']}")
        print(f"Items updated: {summary['updated']}")
        print(f"Items without packaging: {summary['skipped']}")
        print(f"Items with invalid packaging: {summary['failed']}")
        print("=" * 80)

        client.close()
        return True

    except ConnectionFailure:
        print("❌ Error: Could not connect to MongoDB")
        print(f"   Make sure MongoDB is running at {MONGO_URI}")
        return False


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='Re-normalize per-layer inventory stock')
    parser.add_argument('--dry-run', action='store_true', help='Run in dry-run mode (no changes will be made)')
    args = parser.parse_args()

    success = asyncio.run(main(dry_run=args.dry_run))
    sys.exit(0 if success else 1)
