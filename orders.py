"""
Orders and commissions

The platform keeps exactly 10% of every order line and the seller exactly
90%. Amounts are `Decimal` and never rounded, so the two shares always add
back to the line total.

Checkout writes the order first and the commission records second, as one
batch. The two writes are not atomic with each other; see DESIGN.md.
"""
import logging
from decimal import Decimal
from typing import Iterable, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database

import config
from cart import CartStore
from database import create_document, to_object_id, utcnow
from errors import (
    EmptyCartError,
    InvalidOrderTransitionError,
    OrderNotFoundError,
    PermissionDeniedError,
)
from schemas import (
    TERMINAL_ORDER_STATUSES,
    CartItem,
    Commission,
    CommissionSplit,
    Order,
    OrderItem,
    OrderStatus,
    User,
    UserRole,
)

logger = logging.getLogger(__name__)


def split_commission(amount: Decimal) -> CommissionSplit:
    amount = Decimal(amount)
    return CommissionSplit(platform=amount * config.PLATFORM_RATE, seller=amount * config.SELLER_RATE)


def build_order(buyer_id: str, items: Iterable[CartItem]) -> Order:
    order_items: List[OrderItem] = [
        OrderItem(**item.model_dump(), commission=split_commission(item.line_total)) for item in items
    ]
    total = sum((item.line_total for item in order_items), Decimal(0))
    platform = sum((item.commission.platform for item in order_items), Decimal(0))
    seller = sum((item.commission.seller for item in order_items), Decimal(0))
    return Order(
        buyer_id=buyer_id,
        items=order_items,
        total_amount=total,
        commission=CommissionSplit(platform=platform, seller=seller),
        status=OrderStatus.PENDING,
    )


def build_commissions(order_id: str, order: Order) -> List[Commission]:
    return [
        Commission(
            order_id=order_id,
            seller_id=item.seller_id,
            product_id=item.product_id,
            total_amount=item.line_total,
            platform_amount=item.commission.platform,
            seller_amount=item.commission.seller,
        )
        for item in order.items
    ]


class OrderService:
    def __init__(self, db: Database):
        self.db = db

    @property
    def orders(self):
        return self.db[config.ORDERS]

    @property
    def commissions(self):
        return self.db[config.COMMISSIONS]

    def checkout(self, cart: CartStore, buyer_id: str) -> Order:
        """Turn the cart into a pending order plus one commission record per line."""
        if cart.is_empty():
            raise EmptyCartError()
        cart.validate_stock()

        order = build_order(buyer_id, cart.items)
        order_id = create_document(self.db, config.ORDERS, order)
        order.id = order_id
        self._insert_commissions(build_commissions(order_id, order))

        cart.clear()
        logger.info(
            "Order %s created for %s: total=%s platform=%s",
            order_id, buyer_id, order.total_amount, order.commission.platform,
        )
        return self.load(order_id)

    def _insert_commissions(self, records: List[Commission]) -> None:
        now = utcnow()
        docs = []
        for record in records:
            doc = record.to_document()
            doc["created_at"] = now
            doc["updated_at"] = now
            docs.append(doc)
        self.commissions.insert_many(docs)

    def load(self, order_id: str) -> Order:
        oid = to_object_id(order_id)
        doc = self.orders.find_one({"_id": oid}) if oid else None
        if not doc:
            raise OrderNotFoundError(order_id)
        return Order.from_document(doc)

    def get_order(self, order_id: str, user: User) -> Order:
        """Load an order the user is allowed to see."""
        order = self.load(order_id)
        if user.role == UserRole.ADMIN or order.buyer_id == user.id:
            return order
        if user.role == UserRole.SELLER and order.has_seller(user.id):
            return order
        raise PermissionDeniedError("Access to this order is not allowed")

    def list_for_buyer(self, buyer_id: str) -> List[Order]:
        docs = self.orders.find({"buyer_id": buyer_id}).sort("created_at", DESCENDING)
        return [Order.from_document(d) for d in docs]

    def commissions_for(self, order_id: str) -> List[Commission]:
        return [Commission.from_document(d) for d in self.commissions.find({"order_id": order_id})]

    def update_status(self, order_id: str, status: OrderStatus, user: User,
                      tracking_number: Optional[str] = None) -> Order:
        order = self.load(order_id)
        if user.role != UserRole.ADMIN and not (user.role == UserRole.SELLER and order.has_seller(user.id)):
            raise PermissionDeniedError()
        if order.status in TERMINAL_ORDER_STATUSES or status == OrderStatus.PENDING:
            raise InvalidOrderTransitionError(order.status, OrderStatus(status).value)

        updates = {"status": OrderStatus(status).value, "updated_at": utcnow()}
        if tracking_number:
            updates["tracking_number"] = tracking_number
        self.orders.update_one({"_id": to_object_id(order_id)}, {"$set": updates})
        logger.info("Order %s moved from %s to %s by %s", order_id, order.status, updates["status"], user.id)
        return self.load(order_id)
