import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pymongo.database import Database

import catalog
import customers
import dashboard
import orders
from config import Settings, configure_logging, get_settings
from database import close_db, ensure_indexes, get_db
from errors import (
    AuthenticationError,
    ForbiddenError,
    NotFoundError,
    ShopError,
    ValidationError,
)
from security import get_current_admin, get_current_customer

logger = logging.getLogger(__name__)

# ----------------------------------------------------------------------------
# App Setup
# ----------------------------------------------------------------------------

settings = get_settings()
configure_logging(settings.LOG_LEVEL)

app = FastAPI(title="Shop API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------------------------------------------------------------
# Error Handling
# ----------------------------------------------------------------------------

ERROR_STATUS_CODES: Dict[type, int] = {
    ValidationError: 400,
    AuthenticationError: 401,
    ForbiddenError: 403,
    NotFoundError: 404,
}


def status_code_for(exc: ShopError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code_for(exc),
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg")}
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request", "error_type": "ValidationError", "errors": errors},
    )


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "error_type": "InternalError"})


# ----------------------------------------------------------------------------
# Models (request bodies)
# ----------------------------------------------------------------------------

class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class OrderLineRequest(CamelModel):
    product_id: str = Field(..., alias="productId")
    quantity: int = Field(..., ge=1)


class ShippingAddressRequest(CamelModel):
    full_name: str = Field(..., alias="fullName", min_length=1)
    street_address: str = Field(..., alias="streetAddress", min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., alias="zipCode", min_length=1)
    phone_number: str = Field(..., alias="phoneNumber", min_length=1)


class CreateOrderRequest(CamelModel):
    order_items: List[OrderLineRequest] = Field(..., alias="orderItems", min_length=1)
    shipping_address: ShippingAddressRequest = Field(..., alias="shippingAddress")


class OrderStatusRequest(BaseModel):
    status: Any = None


class BulkOrderStatusRequest(CamelModel):
    order_ids: List[str] = Field(..., alias="orderIds")
    status: Any = None


class ProductCreateRequest(CamelModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    category: str = Field(..., min_length=1)
    images: List[str] = Field(default_factory=list, max_length=catalog.MAX_IMAGES)
    is_active: bool = Field(True, alias="isActive")


class ProductUpdateRequest(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1)
    images: Optional[List[str]] = Field(None, max_length=catalog.MAX_IMAGES)
    is_active: Optional[bool] = Field(None, alias="isActive")


class BulkProductRequest(CamelModel):
    product_ids: List[str] = Field(..., alias="productIds")
    status: Optional[str] = None


class BulkCustomerRequest(CamelModel):
    customer_ids: List[str] = Field(..., alias="customerIds")


class ProfileUpdateRequest(CamelModel):
    name: Optional[str] = None
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    avatar_url: Optional[str] = Field(None, alias="imageURL")


class AddressRequest(CamelModel):
    full_name: str = Field(..., alias="fullName", min_length=1)
    phone_number: str = Field(..., alias="phoneNumber", min_length=1)
    label: str = Field(..., min_length=1)
    street_address: str = Field(..., alias="streetAddress", min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., alias="zipCode", min_length=1)
    is_default: bool = Field(False, alias="isDefault")


class AddressUpdateRequest(CamelModel):
    full_name: Optional[str] = Field(None, alias="fullName")
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    label: Optional[str] = None
    street_address: Optional[str] = Field(None, alias="streetAddress")
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = Field(None, alias="zipCode")
    is_default: Optional[bool] = Field(None, alias="isDefault")


class WishlistRequest(CamelModel):
    product_id: str = Field(..., alias="productId")


# ----------------------------------------------------------------------------
# Profile, Addresses & Wishlist
# ----------------------------------------------------------------------------

@app.get("/api/users/profile")
def get_profile(current=Depends(get_current_customer)):
    return customers.public_profile(current)


@app.put("/api/users/profile")
def update_profile(body: ProfileUpdateRequest, current=Depends(get_current_customer), db: Database = Depends(get_db)):
    return customers.update_profile(db, current, body.model_dump())


@app.get("/api/users/addresses")
def get_addresses(current=Depends(get_current_customer)):
    return {"addresses": customers.list_addresses(current)}


@app.post("/api/users/addresses", status_code=201)
def add_address(body: AddressRequest, current=Depends(get_current_customer), db: Database = Depends(get_db)):
    return {"addresses": customers.add_address(db, current, body.model_dump())}


@app.put("/api/users/addresses/{address_id}")
def update_address(address_id: str, body: AddressUpdateRequest, current=Depends(get_current_customer), db: Database = Depends(get_db)):
    return {"addresses": customers.update_address(db, current, address_id, body.model_dump())}


@app.delete("/api/users/addresses/{address_id}")
def delete_address(address_id: str, current=Depends(get_current_customer), db: Database = Depends(get_db)):
    return {"addresses": customers.delete_address(db, current, address_id)}


@app.get("/api/users/wishlist")
def get_wishlist(current=Depends(get_current_customer), db: Database = Depends(get_db)):
    return {"wishlist": customers.get_wishlist(db, current)}


@app.post("/api/users/wishlist")
def add_wishlist(body: WishlistRequest, current=Depends(get_current_customer), db: Database = Depends(get_db)):
    return {"wishlist": customers.add_to_wishlist(db, current, body.product_id)}


@app.delete("/api/users/wishlist/{product_id}")
def remove_wishlist(product_id: str, current=Depends(get_current_customer), db: Database = Depends(get_db)):
    return {"wishlist": customers.remove_from_wishlist(db, current, product_id)}


# ----------------------------------------------------------------------------
# Product Endpoints
# ----------------------------------------------------------------------------

@app.get("/api/products")
def list_products(
    category: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    return catalog.list_active_products(db, category=category, search=search, page=page, limit=limit)


@app.get("/api/products/categories")
def list_categories(db: Database = Depends(get_db)):
    return catalog.list_categories(db)


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return catalog.get_active_product(db, product_id)


# ----------------------------------------------------------------------------
# Orders (Checkout & Tracking)
# ----------------------------------------------------------------------------

@app.post("/api/orders", status_code=201)
def create_order(body: CreateOrderRequest, current=Depends(get_current_customer), db: Database = Depends(get_db)):
    return orders.create_order(
        db,
        current,
        [line.model_dump() for line in body.order_items],
        body.shipping_address.model_dump(),
    )


@app.get("/api/orders")
def list_orders(current=Depends(get_current_customer), db: Database = Depends(get_db)):
    return {"orders": orders.list_customer_orders(db, current)}


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, current=Depends(get_current_customer), db: Database = Depends(get_db)):
    return orders.get_customer_order(db, order_id, current)


@app.get("/api/orders/{order_id}/track")
def track_order(order_id: str, current=Depends(get_current_customer), db: Database = Depends(get_db)):
    return orders.track_order(db, order_id, current)


# ----------------------------------------------------------------------------
# Admin: Product Management
# ----------------------------------------------------------------------------

@app.get("/api/admin/products")
def admin_products(user=Depends(get_current_admin), db: Database = Depends(get_db)):
    return catalog.list_all_products(db)


@app.post("/api/admin/products", status_code=201)
def admin_create_product(body: ProductCreateRequest, user=Depends(get_current_admin), db: Database = Depends(get_db)):
    return catalog.create_product(db, body.model_dump())


@app.put("/api/admin/products/{product_id}")
def admin_update_product(product_id: str, body: ProductUpdateRequest, user=Depends(get_current_admin), db: Database = Depends(get_db)):
    return catalog.update_product(db, product_id, body.model_dump())


@app.delete("/api/admin/products/{product_id}")
def admin_delete_product(product_id: str, user=Depends(get_current_admin), db: Database = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"deleted": True}


@app.post("/api/admin/products/bulk-delete")
def admin_bulk_delete_products(body: BulkProductRequest, user=Depends(get_current_admin), db: Database = Depends(get_db)):
    return {"deleted": catalog.bulk_delete_products(db, body.product_ids)}


@app.post("/api/admin/products/bulk-update")
def admin_bulk_update_products(body: BulkProductRequest, user=Depends(get_current_admin), db: Database = Depends(get_db)):
    return {"updated": catalog.bulk_update_product_status(db, body.product_ids, body.status)}


# ----------------------------------------------------------------------------
# Admin: Orders
# ----------------------------------------------------------------------------

@app.get("/api/admin/orders")
def admin_orders(user=Depends(get_current_admin), db: Database = Depends(get_db)):
    return {"orders": orders.list_all_orders(db)}


@app.put("/api/admin/orders/{order_id}")
def admin_update_order_status(
    order_id: str,
    body: OrderStatusRequest,
    user=Depends(get_current_admin),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return orders.update_order_status(db, order_id, body.status, settings.ENFORCE_STATUS_TRANSITIONS)


@app.post("/api/admin/orders/bulk-update")
def admin_bulk_update_orders(
    body: BulkOrderStatusRequest,
    user=Depends(get_current_admin),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return orders.bulk_update_order_status(db, body.order_ids, body.status, settings.ENFORCE_STATUS_TRANSITIONS)


# ----------------------------------------------------------------------------
# Admin: Customers & Dashboard
# ----------------------------------------------------------------------------

@app.get("/api/admin/customers")
def admin_customers(user=Depends(get_current_admin), db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    return {"customers": customers.list_customers(db, settings.ADMIN_ROLE)}


@app.delete("/api/admin/customers/{customer_id}")
def admin_delete_customer(customer_id: str, user=Depends(get_current_admin), db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    customers.delete_customer(db, customer_id, settings.ADMIN_ROLE)
    return {"deleted": True}


@app.post("/api/admin/customers/bulk-delete")
def admin_bulk_delete_customers(body: BulkCustomerRequest, user=Depends(get_current_admin), db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    return {"deleted": customers.bulk_delete_customers(db, body.customer_ids, settings.ADMIN_ROLE)}


@app.get("/api/admin/stats")
def admin_stats(user=Depends(get_current_admin), db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    return dashboard.get_dashboard_stats(db, settings.ADMIN_ROLE)


# ----------------------------------------------------------------------------
# Health and Startup
# ----------------------------------------------------------------------------

@app.get("/api/health")
def health(db: Database = Depends(get_db)):
    try:
        collections = db.list_collection_names()
        return {"message": "success", "db": "ok", "collections": collections}
    except Exception:
        logger.exception("Database health check failed")
        return {"message": "success", "db": "error"}


@app.on_event("startup")
def on_startup():
    try:
        ensure_indexes(get_db())
    except Exception:
        logger.exception("Could not create indexes on startup")


@app.on_event("shutdown")
def on_shutdown():
    close_db()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
