from fastapi import FastAPI, APIRouter, HTTPException, Depends
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
import os
import logging
from pathlib import Path
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone

from packaging_engine import PackagingError
from supplier_parser import parse_supplier_item
from inventory_item_service import (
    InventoryItemRequest,
    InventoryItemService,
    ItemNotFoundError,
    PackagingEditSession,
    ReplenishRequest,
)

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB connection
mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
client = AsyncIOMotorClient(mongo_url)
db = client[os.environ.get('DB_NAME', 'inventory_admin')]

app = FastAPI(title="Inventory Admin System")

# ==================== CORS CONFIGURATION ====================
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

cors_origins_env = os.environ.get('CORS_ORIGINS', '')
if cors_origins_env:
    cors_origins = [origin.strip() for origin in cors_origins_env.split(',') if origin.strip()]
else:
    cors_origins = DEFAULT_CORS_ORIGINS

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=cors_origins,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin"],
    max_age=600,
)

# ==================== HEALTH ENDPOINT ====================
@app.get("/api/health")
async def health_check():
    """Health check endpoint for monitoring"""
    return {
        "ok": True,
        "time": datetime.now(timezone.utc).isoformat(),
        "service": "Inventory Admin API",
        "version": "1.0.0"
    }

api_router = APIRouter(prefix="/api")


def get_db():
    return db


def get_inventory_service(database=Depends(get_db)) -> InventoryItemService:
    return InventoryItemService(database)


def raise_http(error: PackagingError):
    status_code = 404 if isinstance(error, ItemNotFoundError) else 400
    raise HTTPException(status_code=status_code, detail=error.to_dict())

# ==================== REQUEST MODELS ====================

class ParseRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    raw_name: str
    carton_price: Optional[float] = None


class PreviewRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    packaging_structure: List[Dict[str, Any]] = Field(default_factory=list)
    layer_prices: Dict[str, Any] = Field(default_factory=dict)
    layer_stock: Dict[str, Any] = Field(default_factory=dict)
    buying_price_per_unit: Optional[Any] = None
    auto_calc_enabled: bool = False

# ==================== PACKAGING ROUTES ====================

@api_router.post("/packaging/parse")
async def parse_packaging(data: ParseRequest):
    """Guess packaging layers from a supplier line item"""
    parsed = parse_supplier_item(data.raw_name, data.carton_price)
    return {
        "result": parsed.model_dump(by_alias=True, mode="json"),
        "layers": parsed.to_layers(),
    }


@api_router.post("/packaging/preview")
async def preview_packaging(data: PreviewRequest):
    """Recompute prices, normalized stock and layer cards for an in-progress edit"""
    try:
        session = PackagingEditSession(
            layers=data.packaging_structure or None,
            prices=data.layer_prices,
            stock=data.layer_stock,
            buying_price_per_unit=data.buying_price_per_unit,
            auto_calc_enabled=data.auto_calc_enabled,
        )
    except PackagingError as e:
        raise_http(e)

    return {
        "layers": [view.model_dump(by_alias=True, mode="json") for view in session.layer_views()],
        "layerPrices": {str(i): p for i, p in session.prices.items()},
        "layerStock": {str(i): s for i, s in session.stock.items()},
        "totalPiecesPerMaster": session.total_pieces_per_master,
        "stockSummary": session.stock_summary().model_dump(by_alias=True),
    }

# ==================== INVENTORY ROUTES ====================

@api_router.post("/inventory")
async def create_inventory_item(data: InventoryItemRequest, service: InventoryItemService = Depends(get_inventory_service)):
    try:
        return await service.create_item(data)
    except PackagingError as e:
        raise_http(e)


@api_router.get("/inventory/{item_id}")
async def get_inventory_item(item_id: str, service: InventoryItemService = Depends(get_inventory_service)):
    try:
        item = await service.get_item(item_id)
    except PackagingError as e:
        raise_http(e)
    return {"item": item, "profit": service.profit(item).model_dump(by_alias=True)}


@api_router.put("/inventory/{item_id}")
async def update_inventory_item(item_id: str, data: InventoryItemRequest, service: InventoryItemService = Depends(get_inventory_service)):
    try:
        return await service.update_item(item_id, data)
    except PackagingError as e:
        raise_http(e)


@api_router.post("/inventory/{item_id}/replenish")
async def replenish_inventory_item(item_id: str, data: ReplenishRequest, service: InventoryItemService = Depends(get_inventory_service)):
    try:
        return await service.replenish_item(item_id, data)
    except PackagingError as e:
        raise_http(e)


app.include_router(api_router)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

logger.info(f"CORS origins: {cors_origins}")


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()
