import logging
import os
import secrets
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError

import config
import database
from auth import (
    LoginRequest,
    SignupRequest,
    authenticate,
    create_token,
    get_current_user,
    hash_password,
    register_user,
    require_role,
)
from cart import CartStore, MongoCartStorage
from catalog import CatalogReader
from dashboards import (
    Activity,
    AdminDashboard,
    AdminStats,
    SellerDashboard,
    SellerProfileUpdate,
    SellerStats,
)
from database import create_document, get_db
from errors import (
    AuthenticationError,
    BackendUnavailableError,
    EmptyCartError,
    InsufficientStockError,
    InvalidInputError,
    InvalidOrderTransitionError,
    InvalidPaymentStateError,
    MalformedDocumentError,
    MarketplaceError,
    NotFoundError,
    OutOfStockError,
    PaymentFailedError,
    PermissionDeniedError,
)
from fitting_room import BodyDetector, FittingRoom, NullBodyDetector
from orders import OrderService
from payment import MobileMoneyGateway, PaymentService, PaymentSummary, SimulatedMobileMoneyGateway
from schemas import (
    CartItem,
    Commission,
    Money,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentSession,
    Product,
    ProductCategory,
    ProductDraft,
    ProductPage,
    ProductUpdate,
    ShippingAddress,
    User,
    UserOut,
    UserRole,
)
from storage import ImageStore, public_url

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# App init
app = FastAPI(title="MarketPlace TG API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


ERROR_STATUS_CODES = {
    InvalidInputError: 400,
    EmptyCartError: 400,
    AuthenticationError: 401,
    PaymentFailedError: 402,
    PermissionDeniedError: 403,
    NotFoundError: 404,
    OutOfStockError: 409,
    InsufficientStockError: 409,
    InvalidPaymentStateError: 409,
    InvalidOrderTransitionError: 409,
    MalformedDocumentError: 502,
    BackendUnavailableError: 503,
}


def status_for(exc: MarketplaceError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    """Map MarketplaceError subclasses to appropriate HTTP responses."""
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


@app.exception_handler(PyMongoError)
async def backend_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    logger.error("Backend error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Connection error, please try again", "error_type": "BackendUnavailableError"},
    )


# Service dependencies
def get_catalog(db: Database = Depends(get_db)) -> CatalogReader:
    return CatalogReader(db)


def get_cart(user: User = Depends(get_current_user), db: Database = Depends(get_db)) -> CartStore:
    return CartStore(CatalogReader(db), MongoCartStorage(db), owner_id=user.id)


def get_orders(db: Database = Depends(get_db)) -> OrderService:
    return OrderService(db)


def get_gateway() -> MobileMoneyGateway:
    return SimulatedMobileMoneyGateway()


def get_payments(db: Database = Depends(get_db),
                 gateway: MobileMoneyGateway = Depends(get_gateway)) -> PaymentService:
    return PaymentService(db, gateway)


def get_seller_dashboard(user: User = Depends(require_role(UserRole.SELLER)),
                         db: Database = Depends(get_db)) -> SellerDashboard:
    return SellerDashboard(db, user)


def get_admin_dashboard(user: User = Depends(require_role(UserRole.ADMIN)),
                        db: Database = Depends(get_db)) -> AdminDashboard:
    return AdminDashboard(db, user)


def get_image_store(db: Database = Depends(get_db)) -> ImageStore:
    return ImageStore(db)


def get_body_detector() -> BodyDetector:
    return NullBodyDetector()


# Request models
class AuthResponse(BaseModel):
    token: str
    user: UserOut


class CartLineRequest(BaseModel):
    product_id: str
    options: Dict[str, str] = Field(default_factory=dict)


class AddToCartRequest(CartLineRequest):
    quantity: int = Field(1, ge=1)


class UpdateQuantityRequest(CartLineRequest):
    delta: int


class CartResponse(BaseModel):
    items: List[CartItem]
    total: Money
    item_count: int


class SelectMethodRequest(BaseModel):
    method: PaymentMethod


class OtpRequest(BaseModel):
    phone: str
    confirm_phone: str


class ConfirmPaymentRequest(BaseModel):
    otp: str
    shipping: ShippingAddress


class OrderStatusRequest(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None


class UploadResponse(BaseModel):
    url: str


def cart_response(cart: CartStore) -> CartResponse:
    return CartResponse(items=cart.items, total=cart.total(), item_count=cart.item_count())


# Routes
@app.get("/")
def root():
    return {"message": "MarketPlace TG API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    if database.db is None:
        response["database"] = "⚠️  Available but not initialized"
        return response
    response["database"] = "✅ Available"
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = database.db.name
    response["connection_status"] = "Connected"
    try:
        collections = database.db.list_collection_names()
        response["collections"] = collections[:10]
        response["database"] = "✅ Connected & Working"
    except PyMongoError as e:
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response


# Auth
@app.post("/api/auth/signup", response_model=AuthResponse)
def signup(req: SignupRequest, db: Database = Depends(get_db)):
    user = register_user(db, req)
    return AuthResponse(token=create_token(user), user=UserOut.from_user(user))


@app.post("/api/auth/login", response_model=AuthResponse)
def login(req: LoginRequest, db: Database = Depends(get_db)):
    user = authenticate(db, req.email, req.password)
    return AuthResponse(token=create_token(user), user=UserOut.from_user(user))


@app.get("/api/auth/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return UserOut.from_user(user)


# Products
@app.get("/api/products", response_model=ProductPage)
def list_products(
    cursor: Optional[str] = None,
    category: Optional[ProductCategory] = None,
    search: Optional[str] = None,
    limit: int = Query(config.PAGE_SIZE, ge=1, le=100),
    catalog: CatalogReader = Depends(get_catalog),
):
    category_value = category.value if category else None
    if cursor:
        return catalog.get_more(cursor, limit, category=category_value, search=search)
    return catalog.get(limit, category=category_value, search=search)


@app.get("/api/products/{product_id}", response_model=Product)
def get_product(product_id: str, catalog: CatalogReader = Depends(get_catalog)):
    return catalog.get_product(product_id)


# Cart
@app.get("/api/cart", response_model=CartResponse)
def view_cart(cart: CartStore = Depends(get_cart)):
    return cart_response(cart)


@app.post("/api/cart/items", response_model=CartResponse)
def add_to_cart(req: AddToCartRequest, cart: CartStore = Depends(get_cart)):
    cart.add(req.product_id, req.quantity, req.options)
    return cart_response(cart)


@app.patch("/api/cart/items", response_model=CartResponse)
def update_cart_item(req: UpdateQuantityRequest, cart: CartStore = Depends(get_cart)):
    cart.update_quantity(req.product_id, req.delta, req.options)
    return cart_response(cart)


@app.delete("/api/cart/items", response_model=CartResponse)
def remove_cart_item(req: CartLineRequest, cart: CartStore = Depends(get_cart)):
    cart.remove(req.product_id, req.options)
    return cart_response(cart)


@app.delete("/api/cart", response_model=CartResponse)
def clear_cart(cart: CartStore = Depends(get_cart)):
    cart.clear()
    return cart_response(cart)


# Orders
@app.post("/api/checkout", response_model=Order, status_code=201)
def checkout(
    user: User = Depends(get_current_user),
    cart: CartStore = Depends(get_cart),
    orders: OrderService = Depends(get_orders),
):
    return orders.checkout(cart, user.id)


@app.get("/api/orders", response_model=List[Order])
def my_orders(user: User = Depends(get_current_user), orders: OrderService = Depends(get_orders)):
    return orders.list_for_buyer(user.id)


@app.get("/api/orders/{order_id}", response_model=Order)
def get_order(order_id: str, user: User = Depends(get_current_user),
              orders: OrderService = Depends(get_orders)):
    return orders.get_order(order_id, user)


@app.patch("/api/orders/{order_id}/status", response_model=Order)
def update_order_status(
    order_id: str,
    req: OrderStatusRequest,
    user: User = Depends(require_role(UserRole.SELLER, UserRole.ADMIN)),
    orders: OrderService = Depends(get_orders),
):
    return orders.update_status(order_id, req.status, user, req.tracking_number)


# Payment
@app.get("/api/orders/{order_id}/payment", response_model=PaymentSummary)
def payment_summary(order_id: str, city: Optional[str] = None, user: User = Depends(get_current_user),
                    payments: PaymentService = Depends(get_payments)):
    return payments.summary(order_id, user, city)


@app.post("/api/orders/{order_id}/payment/method", response_model=PaymentSession)
def select_payment_method(order_id: str, req: SelectMethodRequest, user: User = Depends(get_current_user),
                          payments: PaymentService = Depends(get_payments)):
    return payments.select_method(order_id, user, req.method)


@app.post("/api/orders/{order_id}/payment/otp", response_model=PaymentSession)
def request_otp(order_id: str, req: OtpRequest, user: User = Depends(get_current_user),
                payments: PaymentService = Depends(get_payments)):
    return payments.request_otp(order_id, user, req.phone, req.confirm_phone)


@app.post("/api/orders/{order_id}/payment/confirm", response_model=Order)
def confirm_payment(order_id: str, req: ConfirmPaymentRequest, user: User = Depends(get_current_user),
                    payments: PaymentService = Depends(get_payments)):
    return payments.confirm(order_id, user, req.otp, req.shipping)


@app.delete("/api/orders/{order_id}/payment", status_code=204)
def cancel_payment(order_id: str, user: User = Depends(get_current_user),
                   payments: PaymentService = Depends(get_payments)):
    payments.cancel(order_id, user)
    return Response(status_code=204)


# Seller dashboard
@app.get("/api/seller/products", response_model=List[Product])
def seller_products(dashboard: SellerDashboard = Depends(get_seller_dashboard)):
    return dashboard.products()


@app.post("/api/seller/products", response_model=Product, status_code=201)
def seller_add_product(draft: ProductDraft, dashboard: SellerDashboard = Depends(get_seller_dashboard)):
    return dashboard.add_product(draft)


@app.put("/api/seller/products/{product_id}", response_model=Product)
def seller_update_product(product_id: str, update: ProductUpdate,
                          dashboard: SellerDashboard = Depends(get_seller_dashboard)):
    return dashboard.update_product(product_id, update)


@app.post("/api/seller/products/{product_id}/toggle", response_model=Product)
def seller_toggle_product(product_id: str, dashboard: SellerDashboard = Depends(get_seller_dashboard)):
    return dashboard.toggle_product_status(product_id)


@app.delete("/api/seller/products/{product_id}", status_code=204)
def seller_delete_product(product_id: str, dashboard: SellerDashboard = Depends(get_seller_dashboard)):
    dashboard.delete_product(product_id)
    return Response(status_code=204)


@app.get("/api/seller/orders", response_model=List[Order])
def seller_orders(dashboard: SellerDashboard = Depends(get_seller_dashboard)):
    return dashboard.orders()


@app.get("/api/seller/sales", response_model=List[Commission])
def seller_sales(dashboard: SellerDashboard = Depends(get_seller_dashboard)):
    return dashboard.sales()


@app.get("/api/seller/stats", response_model=SellerStats)
def seller_stats(dashboard: SellerDashboard = Depends(get_seller_dashboard)):
    return dashboard.stats()


@app.put("/api/seller/profile", response_model=UserOut)
def seller_update_profile(update: SellerProfileUpdate, dashboard: SellerDashboard = Depends(get_seller_dashboard)):
    return UserOut.from_user(dashboard.update_profile(update))


# Admin dashboard
@app.get("/api/admin/stats", response_model=AdminStats)
def admin_stats(dashboard: AdminDashboard = Depends(get_admin_dashboard)):
    return dashboard.stats()


@app.get("/api/admin/activity", response_model=List[Activity])
def admin_activity(dashboard: AdminDashboard = Depends(get_admin_dashboard)):
    return dashboard.recent_activity()


@app.get("/api/admin/users", response_model=List[UserOut])
def admin_users(dashboard: AdminDashboard = Depends(get_admin_dashboard)):
    return dashboard.users()


@app.post("/api/admin/users/{user_id}/toggle", response_model=UserOut)
def admin_toggle_user(user_id: str, dashboard: AdminDashboard = Depends(get_admin_dashboard)):
    return dashboard.toggle_user_status(user_id)


@app.get("/api/admin/products", response_model=List[Product])
def admin_products(active: Optional[bool] = None, dashboard: AdminDashboard = Depends(get_admin_dashboard)):
    return dashboard.products(active)


@app.post("/api/admin/products/{product_id}/toggle", response_model=Product)
def admin_toggle_product(product_id: str, dashboard: AdminDashboard = Depends(get_admin_dashboard)):
    return dashboard.toggle_product_status(product_id)


@app.delete("/api/admin/products/{product_id}", status_code=204)
def admin_delete_product(product_id: str, dashboard: AdminDashboard = Depends(get_admin_dashboard)):
    dashboard.delete_product(product_id)
    return Response(status_code=204)


@app.get("/api/admin/orders", response_model=List[Order])
def admin_orders(status: Optional[OrderStatus] = None, dashboard: AdminDashboard = Depends(get_admin_dashboard)):
    return dashboard.orders(status.value if status else None)


@app.get("/api/admin/commissions", response_model=List[Commission])
def admin_commissions(dashboard: AdminDashboard = Depends(get_admin_dashboard)):
    return dashboard.commissions()


# Files
@app.post("/api/files", response_model=UploadResponse, status_code=201)
async def upload_file(
    file: UploadFile = File(...),
    user: User = Depends(require_role(UserRole.SELLER, UserRole.ADMIN)),
    store: ImageStore = Depends(get_image_store),
):
    data = await file.read()
    return UploadResponse(url=store.upload(user.id, file.filename or "upload", file.content_type, data))


@app.get("/api/files/{file_id}")
def download_file(file_id: str, store: ImageStore = Depends(get_image_store)):
    stored = store.get(file_id)
    return Response(content=stored.data, media_type=stored.content_type)


# Fitting room
def stored_file_id(url: Optional[str]) -> Optional[str]:
    prefix = public_url("")
    if url and url.startswith(prefix):
        return url[len(prefix):]
    return None


@app.post("/api/fitting-room/{product_id}")
async def fitting_room_preview(
    product_id: str,
    photo: UploadFile = File(...),
    garment: Optional[UploadFile] = File(None),
    size: int = Form(100, ge=50, le=200),
    position: int = Form(0, ge=-200, le=200),
    user: User = Depends(get_current_user),
    catalog: CatalogReader = Depends(get_catalog),
    store: ImageStore = Depends(get_image_store),
    detector: BodyDetector = Depends(get_body_detector),
):
    product = catalog.get_product(product_id)
    room = FittingRoom(detector)
    room.load_user_photo(await photo.read())
    if garment is not None:
        room.load_product_image(await garment.read())
    else:
        file_id = stored_file_id(product.image_url)
        if file_id is None:
            raise InvalidInputError("This product has no stored image, upload the garment picture", field="garment")
        room.load_product_image(store.get(file_id).data)
    logger.info("Fitting room preview for %s by %s", product_id, user.id)
    return Response(content=room.render_png(size, position), media_type="image/png")


# Seed demo data on startup
DEMO_SELLER = {
    "email": "vendeur@marketplace-togo.tg",
    "first_name": "Jean",
    "last_name": "Koffi",
    "phone": "+22887654321",
    "role": UserRole.SELLER.value,
    "shop_name": "Boutique Koffi",
    "shop_description": "Vêtements traditionnels et modernes",
    "shop_rating": 4.5,
}

DEMO_PRODUCTS: List[dict] = [
    {
        "name": "Pagne Wax Vlisco",
        "description": "Pagne wax 6 yards, motifs traditionnels, 100% coton",
        "category": ProductCategory.CLOTHING.value,
        "price": 12000,
        "stock": 40,
    },
    {
        "name": "Chemise en Kente",
        "description": "Chemise homme en tissu kente tissé à la main",
        "category": ProductCategory.CLOTHING.value,
        "price": 15000,
        "stock": 20,
    },
    {
        "name": "Sandales en cuir",
        "description": "Sandales artisanales en cuir de Lomé",
        "category": ProductCategory.SHOES.value,
        "price": 8000,
        "stock": 35,
    },
    {
        "name": "Sac en raphia",
        "description": "Sac à main tressé en raphia naturel",
        "category": ProductCategory.ACCESSORIES.value,
        "price": 6500,
        "stock": 25,
    },
    {
        "name": "Beurre de karité",
        "description": "Beurre de karité pur du nord Togo, pot de 250 g",
        "category": ProductCategory.BEAUTY.value,
        "price": 2500,
        "stock": 100,
    },
    {
        "name": "Panier tressé",
        "description": "Panier de rangement tressé à la main",
        "category": ProductCategory.HOME.value,
        "price": 4000,
        "stock": 30,
    },
    {
        "name": "Gari de Tsévié",
        "description": "Gari de manioc, sac de 5 kg",
        "category": ProductCategory.FOOD.value,
        "price": 5000,
        "stock": 60,
    },
]


def seed_demo_data(db: Database) -> None:
    if db[config.PRODUCTS].count_documents({}) > 0:
        return
    seller_doc = db[config.USERS].find_one({"email": DEMO_SELLER["email"]})
    if seller_doc:
        seller_id = str(seller_doc["_id"])
    else:
        seller = User(password_hash=hash_password(secrets.token_urlsafe(16)), **DEMO_SELLER)
        seller_id = create_document(db, config.USERS, seller)
    for prod in DEMO_PRODUCTS:
        product = Product(seller_id=seller_id, seller_name=DEMO_SELLER["shop_name"], **prod)
        create_document(db, config.PRODUCTS, product)
    db[config.USERS].update_one({"email": DEMO_SELLER["email"]}, {"$set": {"total_products": len(DEMO_PRODUCTS)}})
    logger.info("Seeded %d demo products", len(DEMO_PRODUCTS))


def seed_admin(db: Database) -> None:
    email = os.getenv("ADMIN_EMAIL")
    password = os.getenv("ADMIN_PASSWORD")
    if not email or not password or db[config.USERS].find_one({"email": email}):
        return
    admin = User(
        email=email,
        password_hash=hash_password(password),
        first_name="Admin",
        last_name="MarketPlace",
        role=UserRole.ADMIN,
    )
    create_document(db, config.USERS, admin)
    logger.info("Created admin account %s", email)


@app.on_event("startup")
def seed_on_startup():
    if database.db is None:
        return
    try:
        seed_admin(database.db)
        if config.SEED_DEMO_DATA:
            seed_demo_data(database.db)
    except PyMongoError:
        logger.exception("Seeding demo data failed")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
