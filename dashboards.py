"""
Seller and admin dashboards

Both read whole collections (scoped to the seller where relevant) and compute
their summaries in process. They also carry the few mutations the dashboards
expose: listing management, status toggles and deletions.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pymongo import DESCENDING
from pymongo.database import Database

import config
from database import create_document, to_bson, to_object_id, utcnow
from errors import InvalidInputError, PermissionDeniedError, ProductNotFoundError, UserNotFoundError
from schemas import (
    Commission,
    Money,
    Order,
    Product,
    ProductDraft,
    ProductUpdate,
    User,
    UserOut,
    UserRole,
)

logger = logging.getLogger(__name__)

NEWEST = [("created_at", DESCENDING)]
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class SalesSummary(BaseModel):
    gross_sales: Money = Decimal(0)
    platform_commission: Money = Decimal(0)
    seller_earnings: Money = Decimal(0)


class SellerStats(BaseModel):
    total_products: int
    total_orders: int
    total_revenue: Money
    net_earnings: Money
    sales: SalesSummary


class AdminStats(BaseModel):
    total_users: int
    total_sellers: int
    total_products: int
    total_orders: int
    total_revenue: Money
    total_commissions: Money


class Activity(BaseModel):
    type: str
    text: str
    date: Optional[datetime] = None


class SellerProfileUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    shop_name: Optional[str] = Field(None, min_length=1, max_length=100)
    shop_description: Optional[str] = Field(None, max_length=config.DESCRIPTION_LENGTH[1])
    phone: Optional[str] = Field(None, pattern=config.PHONE_PATTERN)


def summarize_sales(sales: List[Commission]) -> SalesSummary:
    return SalesSummary(
        gross_sales=sum((s.total_amount for s in sales), Decimal(0)),
        platform_commission=sum((s.platform_amount for s in sales), Decimal(0)),
        seller_earnings=sum((s.seller_amount for s in sales), Decimal(0)),
    )


def _load_product(db: Database, product_id: str) -> Product:
    oid = to_object_id(product_id)
    doc = db[config.PRODUCTS].find_one({"_id": oid}) if oid else None
    if not doc:
        raise ProductNotFoundError(product_id)
    return Product.from_document(doc)


def _toggle_product(db: Database, product: Product) -> Product:
    db[config.PRODUCTS].update_one(
        {"_id": to_object_id(product.id)},
        {"$set": {"is_active": not product.is_active, "updated_at": utcnow()}},
    )
    logger.info("Product %s %s", product.id, "deactivated" if product.is_active else "activated")
    return _load_product(db, product.id)


def _delete_product(db: Database, product: Product) -> None:
    db[config.PRODUCTS].delete_one({"_id": to_object_id(product.id)})
    seller_oid = to_object_id(product.seller_id)
    if seller_oid:
        db[config.USERS].update_one(
            {"_id": seller_oid, "total_products": {"$gt": 0}},
            {"$inc": {"total_products": -1}},
        )
    logger.info("Product %s deleted", product.id)


class SellerDashboard:
    def __init__(self, db: Database, seller: User):
        if seller.role != UserRole.SELLER:
            raise PermissionDeniedError("Seller only")
        self.db = db
        self.seller = seller

    def products(self) -> List[Product]:
        docs = self.db[config.PRODUCTS].find({"seller_id": self.seller.id}).sort(NEWEST)
        return [Product.from_document(d) for d in docs]

    def orders(self) -> List[Order]:
        docs = self.db[config.ORDERS].find({"items.seller_id": self.seller.id}).sort(NEWEST)
        return [Order.from_document(d) for d in docs]

    def sales(self) -> List[Commission]:
        docs = self.db[config.COMMISSIONS].find({"seller_id": self.seller.id}).sort(NEWEST)
        return [Commission.from_document(d) for d in docs]

    def stats(self) -> SellerStats:
        sales = self.sales()
        summary = summarize_sales(sales)
        return SellerStats(
            total_products=self.db[config.PRODUCTS].count_documents({"seller_id": self.seller.id}),
            total_orders=self.db[config.ORDERS].count_documents({"items.seller_id": self.seller.id}),
            # commission seller amounts are already net of the platform share
            total_revenue=summary.seller_earnings,
            net_earnings=summary.seller_earnings,
            sales=summary,
        )

    def add_product(self, draft: ProductDraft) -> Product:
        image_url = draft.image_url
        product = Product(
            seller_id=self.seller.id,
            seller_name=self.seller.shop_name or self.seller.full_name,
            name=draft.name,
            description=draft.description,
            category=draft.category,
            price=draft.price,
            stock=draft.stock,
            image_url=image_url,
            images=[image_url] if image_url else [],
        )
        product_id = create_document(self.db, config.PRODUCTS, product)
        self.db[config.USERS].update_one(
            {"_id": to_object_id(self.seller.id)},
            {"$inc": {"total_products": 1}, "$set": {"last_activity": utcnow()}},
        )
        logger.info("Seller %s listed product %s", self.seller.id, product_id)
        return _load_product(self.db, product_id)

    def _own_product(self, product_id: str) -> Product:
        product = _load_product(self.db, product_id)
        if product.seller_id != self.seller.id:
            raise PermissionDeniedError("This product belongs to another seller")
        return product

    def update_product(self, product_id: str, update: ProductUpdate) -> Product:
        product = self._own_product(product_id)
        updates = update.model_dump(exclude_none=True)
        if not updates:
            raise InvalidInputError("No updates provided")
        if "image_url" in updates:
            updates["images"] = [updates["image_url"]]
        updates["updated_at"] = utcnow()
        self.db[config.PRODUCTS].update_one({"_id": to_object_id(product.id)}, {"$set": to_bson(updates)})
        return _load_product(self.db, product_id)

    def toggle_product_status(self, product_id: str) -> Product:
        return _toggle_product(self.db, self._own_product(product_id))

    def delete_product(self, product_id: str) -> None:
        _delete_product(self.db, self._own_product(product_id))

    def update_profile(self, update: SellerProfileUpdate) -> User:
        updates = update.model_dump(exclude_none=True)
        if not updates:
            raise InvalidInputError("No updates provided")
        updates["updated_at"] = utcnow()
        self.db[config.USERS].update_one({"_id": to_object_id(self.seller.id)}, {"$set": updates})
        doc = self.db[config.USERS].find_one({"_id": to_object_id(self.seller.id)})
        self.seller = User.from_document(doc)
        return self.seller


class AdminDashboard:
    def __init__(self, db: Database, admin: User):
        if admin.role != UserRole.ADMIN:
            raise PermissionDeniedError("Admin only")
        self.db = db
        self.admin = admin

    def users(self) -> List[UserOut]:
        docs = self.db[config.USERS].find().sort(NEWEST)
        return [UserOut.from_user(User.from_document(d)) for d in docs]

    def products(self, active: Optional[bool] = None) -> List[Product]:
        query = {} if active is None else {"is_active": active}
        return [Product.from_document(d) for d in self.db[config.PRODUCTS].find(query).sort(NEWEST)]

    def orders(self, status: Optional[str] = None) -> List[Order]:
        query = {"status": status} if status else {}
        return [Order.from_document(d) for d in self.db[config.ORDERS].find(query).sort(NEWEST)]

    def commissions(self) -> List[Commission]:
        return [Commission.from_document(d) for d in self.db[config.COMMISSIONS].find().sort(NEWEST)]

    def stats(self) -> AdminStats:
        users = self.db[config.USERS]
        return AdminStats(
            total_users=users.count_documents({}),
            total_sellers=users.count_documents({"role": UserRole.SELLER.value}),
            total_products=self.db[config.PRODUCTS].count_documents({}),
            total_orders=self.db[config.ORDERS].count_documents({}),
            total_revenue=sum((o.total_amount for o in self.orders()), Decimal(0)),
            total_commissions=sum((c.platform_amount for c in self.commissions()), Decimal(0)),
        )

    def recent_activity(self, per_kind: int = 5, limit: int = 10) -> List[Activity]:
        activities: List[Activity] = []
        for order in self.orders()[:per_kind]:
            activities.append(Activity(type="order", text=f"New order #{order.id[:8]}", date=order.created_at))
        for product in self.products()[:per_kind]:
            activities.append(Activity(type="product", text=f"New product: {product.name}", date=product.created_at))
        for user in self.db[config.USERS].find().sort(NEWEST).limit(per_kind):
            user = User.from_document(user)
            activities.append(Activity(type="user", text=f"New user: {user.full_name}", date=user.created_at))
        activities.sort(key=lambda a: a.date or EPOCH, reverse=True)
        return activities[:limit]

    def toggle_user_status(self, user_id: str) -> UserOut:
        if user_id == self.admin.id:
            raise InvalidInputError("You cannot deactivate your own account")
        oid = to_object_id(user_id)
        doc = self.db[config.USERS].find_one({"_id": oid}) if oid else None
        if not doc:
            raise UserNotFoundError(user_id)
        user = User.from_document(doc)
        self.db[config.USERS].update_one(
            {"_id": oid}, {"$set": {"is_active": not user.is_active, "updated_at": utcnow()}}
        )
        logger.info("User %s %s by %s", user_id, "deactivated" if user.is_active else "activated", self.admin.id)
        user.is_active = not user.is_active
        return UserOut.from_user(user)

    def toggle_product_status(self, product_id: str) -> Product:
        return _toggle_product(self.db, _load_product(self.db, product_id))

    def delete_product(self, product_id: str) -> None:
        _delete_product(self.db, _load_product(self.db, product_id))
