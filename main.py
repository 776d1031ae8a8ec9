import os
import logging
from contextlib import asynccontextmanager
from typing import Literal, Optional
from datetime import datetime, timedelta, timezone
from fastapi import FastAPI, HTTPException, Depends, Query
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database

import addresses
import cart
import orders
import wishlist
from catalog import get_product, list_products as query_products, parse_object_id, serialize_product
from database import create_document, db as default_db, ensure_indexes, get_db
from errors import InvalidInputError, StorefrontError
from schemas import Coupon, OrderStatus, Product, ShippingAddress, User

SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(name)s [%(levelname)s] %(message)s")
logger = logging.getLogger("minutemart")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if default_db is not None:
        ensure_indexes(default_db)
    yield


app = FastAPI(title="MinuteMart API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request, exc: StorefrontError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request, exc: RequestValidationError):
    # same body shape as InvalidInputError raised inside the handlers
    errors = jsonable_encoder(exc.errors())
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", [])[1:])
    message = first.get("msg", "Invalid request")
    error = InvalidInputError(f"{field}: {message}" if field else message, errors=errors)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# Helpers
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"

class UserOut(BaseModel):
    id: str
    name: str
    email: EmailStr
    role: str = "customer"

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)

class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)

class UpdateCartRequest(BaseModel):
    quantity: int = Field(..., ge=1)

class ApplyCouponRequest(BaseModel):
    code: str

class PlaceOrderRequest(BaseModel):
    shipping_address: Optional[ShippingAddress] = None
    address_id: Optional[str] = Field(None, description="Saved address to ship to, copied into the order")
    payment_method: Optional[str] = "cod"
    coupon_code: Optional[str] = None
    notes: Optional[str] = None

class StatusUpdateRequest(BaseModel):
    status: OrderStatus

class WishlistAddRequest(BaseModel):
    product_id: str

class AddressRequest(ShippingAddress):
    label: Literal["home", "work", "other"] = "home"
    is_default: bool = False

class AddressUpdateRequest(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    label: Optional[Literal["home", "work", "other"]] = None
    is_default: Optional[bool] = None


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def get_current_user(token: str = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> UserOut:
    credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception
    oid = parse_object_id(user_id)
    user = db["user"].find_one({"_id": oid}) if oid else None
    if not user or not user.get("is_active", True):
        raise credentials_exception
    return UserOut(id=str(user["_id"]), name=user.get("name"), email=user.get("email"), role=user.get("role", "customer"))


def require_admin(current: UserOut = Depends(get_current_user)) -> UserOut:
    if current.role != "admin":
        raise HTTPException(403, "Admin privileges required")
    return current


@app.get("/")
def read_root():
    return {"message": "MinuteMart backend is running"}


# Auth
@app.post("/api/register", response_model=UserOut, status_code=201)
def register(user: RegisterRequest, db: Database = Depends(get_db)):
    existing = db["user"].find_one({"email": user.email})
    if existing:
        raise HTTPException(400, "Email already registered")
    data = User(name=user.name, email=user.email, password_hash=get_password_hash(user.password))
    user_id = create_document(db, "user", data)
    logger.info("Registered user %s", user_id)
    return UserOut(id=user_id, name=user.name, email=user.email)


@app.post("/api/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": form_data.username})
    if not user or not verify_password(form_data.password, user.get("password_hash", "")):
        raise HTTPException(400, "Incorrect email or password")
    access_token = create_access_token({"sub": str(user["_id"])})
    return Token(access_token=access_token)


@app.get("/api/me", response_model=UserOut)
def me(current: UserOut = Depends(get_current_user)):
    return current


# Catalog
@app.get("/api/products")
def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    flash_sale: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    sort: Optional[str] = Query(None, description="price_asc|price_desc|rating_desc|popular"),
    db: Database = Depends(get_db),
):
    return query_products(db, q=q, category=category, min_price=min_price, max_price=max_price,
                          flash_sale=flash_sale, sort=sort, page=page, limit=limit)


@app.get("/api/products/{product_id}")
def get_product_detail(product_id: str, db: Database = Depends(get_db)):
    return serialize_product(get_product(db, product_id))


# Cart
@app.get("/api/cart")
def get_cart(current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return cart.get_cart(db, current.id)


@app.post("/api/cart/add")
def add_to_cart(req: AddToCartRequest, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    count = cart.add_item(db, current.id, req.product_id, req.quantity)
    return {"message": "Added to cart", "cart_count": count}


@app.put("/api/cart/update/{product_id}")
def update_cart_item(product_id: str, req: UpdateCartRequest, current: UserOut = Depends(get_current_user),
                     db: Database = Depends(get_db)):
    cart.update_item(db, current.id, product_id, req.quantity)
    return {"message": "Cart updated"}


@app.delete("/api/cart/remove/{product_id}")
def remove_cart_item(product_id: str, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    cart.remove_item(db, current.id, product_id)
    return {"message": "Item removed from cart"}


@app.delete("/api/cart/clear")
def clear_cart(current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    cart.clear(db, current.id)
    return {"message": "Cart cleared"}


@app.get("/api/cart/count")
def cart_count(current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"count": cart.count_items(db, current.id)}


@app.post("/api/cart/apply-coupon")
def apply_coupon(req: ApplyCouponRequest, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return cart.preview_coupon(db, current.id, req.code)


# Orders
@app.post("/api/orders", status_code=201)
def create_order(req: PlaceOrderRequest, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    shipping_address = req.shipping_address
    if shipping_address is None and req.address_id:
        shipping_address = addresses.snapshot(db, current.id, req.address_id)
    order = orders.place_order(
        db,
        current.id,
        shipping_address,
        payment_method=req.payment_method,
        coupon_code=req.coupon_code,
        notes=req.notes,
    )
    return {"message": "Order placed successfully", "order": order}


@app.get("/api/orders")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    current: UserOut = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return orders.list_orders(db, current.id, page=page, limit=limit, status=status.value if status else None)


@app.get("/api/orders/{order_ref}")
def get_order(order_ref: str, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return orders.get_order(db, current.id, order_ref)


@app.put("/api/orders/{order_ref}/cancel")
def cancel_order(order_ref: str, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return orders.cancel_order(db, current.id, order_ref)


@app.get("/api/orders/{order_ref}/track")
def track_order(order_ref: str, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return orders.track_order(db, current.id, order_ref)


@app.put("/api/admin/orders/{order_ref}/status")
def update_order_status(order_ref: str, req: StatusUpdateRequest, admin: UserOut = Depends(require_admin),
                        db: Database = Depends(get_db)):
    logger.info("Admin %s sets order %s to %s", admin.id, order_ref, req.status.value)
    return orders.transition_order(db, order_ref, req.status)


# Wishlist
@app.get("/api/wishlist")
def get_wishlist(current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return wishlist.get_items(db, current.id)


@app.post("/api/wishlist/add")
def add_to_wishlist(req: WishlistAddRequest, current: UserOut = Depends(get_current_user),
                    db: Database = Depends(get_db)):
    count = wishlist.add_item(db, current.id, req.product_id)
    return {"message": "Added to wishlist", "wishlist_count": count}


@app.delete("/api/wishlist/remove/{product_id}")
def remove_from_wishlist(product_id: str, current: UserOut = Depends(get_current_user),
                         db: Database = Depends(get_db)):
    wishlist.remove_item(db, current.id, product_id)
    return {"message": "Removed from wishlist"}


@app.get("/api/wishlist/check/{product_id}")
def check_wishlist(product_id: str, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"in_wishlist": wishlist.contains(db, current.id, product_id)}


@app.post("/api/wishlist/move-to-cart/{product_id}")
def move_to_cart(product_id: str, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return wishlist.move_to_cart(db, current.id, product_id)


@app.get("/api/wishlist/count")
def wishlist_count(current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"count": wishlist.count_items(db, current.id)}


# Address book
@app.get("/api/user/addresses")
def list_addresses(current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return addresses.list_addresses(db, current.id)


@app.post("/api/user/addresses", status_code=201)
def add_address(req: AddressRequest, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    address_id = addresses.add_address(db, current.id, req.model_dump())
    return {"message": "Address added successfully", "address_id": address_id}


@app.put("/api/user/addresses/{address_id}")
def update_address(address_id: str, req: AddressUpdateRequest, current: UserOut = Depends(get_current_user),
                   db: Database = Depends(get_db)):
    return addresses.update_address(db, current.id, address_id, req.model_dump(exclude_unset=True))


@app.delete("/api/user/addresses/{address_id}")
def delete_address(address_id: str, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    addresses.delete_address(db, current.id, address_id)
    return {"message": "Address deleted successfully"}


# Seed sample data if empty
@app.post("/api/seed")
def seed(db: Database = Depends(get_db)):
    now = datetime.now(timezone.utc)
    if db["product"].count_documents({}) == 0:
        flash_sale_end = now + timedelta(days=3)
        products = [
            {
                "name": "Sony WH-1000XM5",
                "slug": "sony-wh-1000xm5",
                "description": "Industry-leading noise cancellation headphones with exceptional sound quality.",
                "price": 26990.0,
                "mrp": 34990.0,
                "category": "electronics",
                "brand": "Sony",
                "stock": 100,
                "tags": ["headphones", "sony", "wireless"],
                "is_flash_sale": True,
                "flash_sale_price": 22990.0,
                "flash_sale_end": flash_sale_end,
            },
            {
                "name": "Running Shoes Pro",
                "slug": "running-shoes-pro",
                "description": "Advanced cushioning technology for maximum comfort and performance.",
                "price": 6999.0,
                "mrp": 9999.0,
                "category": "fashion",
                "brand": "SportX",
                "stock": 80,
                "tags": ["shoes", "running", "sports"],
                "is_flash_sale": True,
                "flash_sale_price": 4999.0,
                "flash_sale_end": flash_sale_end,
            },
            {
                "name": "Organic Honey (500g)",
                "slug": "organic-honey-500g",
                "description": "Pure organic honey from Himalayan bee farms.",
                "price": 449.0,
                "mrp": 599.0,
                "category": "groceries",
                "brand": "Nature's Best",
                "stock": 200,
                "tags": ["honey", "organic", "natural"],
            },
            {
                "name": "Premium Notebook Set",
                "slug": "premium-notebook-set",
                "description": "Set of 5 premium hardcover notebooks with different ruling styles.",
                "price": 799.0,
                "mrp": 1299.0,
                "category": "books-stationery",
                "brand": "WriteWell",
                "stock": 150,
                "tags": ["notebook", "stationery", "writing"],
            },
        ]
        for p in products:
            create_document(db, "product", Product(**p))
    if db["coupon"].count_documents({}) == 0:
        seed_coupons = [
            {"code": "WELCOME10", "type": "percentage", "value": 10, "min_purchase": 500, "max_discount": 200},
            {"code": "FLAT100", "type": "fixed", "value": 100, "min_purchase": 999},
            {"code": "SUPER20", "type": "percentage", "value": 20, "min_purchase": 2000, "max_discount": 500},
            {"code": "NEWUSER", "type": "percentage", "value": 15, "min_purchase": 0, "max_discount": 300},
        ]
        for c in seed_coupons:
            create_document(db, "coupon", Coupon(**c, usage_limit=1000))
    return {"ok": True}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        db = get_db()
        response["database"] = "✅ Available"
        response["connection_status"] = "Connected"
        try:
            collections = db.list_collection_names()
            response["collections"] = collections[:10]
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    except HTTPException:
        response["database"] = "⚠️ Available but not initialized"
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
