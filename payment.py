"""
Mobile money checkout

Paying for an order walks a small state machine kept in the
payment_sessions collection:

    method_selection -> otp_requested -> processing -> paid
                                                   -> failed (retry allowed)

Any error while charging or recording the payment leaves the session
failed, so the buyer can try again.

Only a successful payment touches the order and its commissions. Cancelling
before that point drops the session and leaves both untouched.

No real telecom integration exists: `SimulatedMobileMoneyGateway` accepts a
single fixed one-time code.
"""
import logging
import re
import time
from decimal import Decimal
from typing import Optional, Protocol

from pydantic import BaseModel
from pymongo.database import Database

import config
from database import to_bson, to_object_id, utcnow
from errors import (
    InvalidInputError,
    InvalidPaymentStateError,
    PaymentFailedError,
    PermissionDeniedError,
)
from orders import OrderService
from schemas import (
    CommissionStatus,
    Money,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentSession,
    PaymentState,
    ShippingAddress,
    User,
)

logger = logging.getLogger(__name__)

PHONE_RE = re.compile(config.PHONE_PATTERN)


def shipping_cost(city: Optional[str]) -> Decimal:
    if not city:
        return Decimal(config.DEFAULT_SHIPPING)
    return Decimal(config.SHIPPING_RATES.get(city.strip().lower(), config.DEFAULT_SHIPPING))


def payable_total(order: Order, city: Optional[str]) -> Decimal:
    """Amount charged at payment time. The stored order total excludes shipping."""
    return order.total_amount + shipping_cost(city)


def validate_phone(phone: str) -> bool:
    return bool(phone) and PHONE_RE.match(phone.strip()) is not None


class PaymentResult(BaseModel):
    success: bool
    transaction_id: Optional[str] = None
    amount: Optional[Money] = None
    error: Optional[str] = None


class MobileMoneyGateway(Protocol):
    def request_otp(self, method: str, phone: str) -> None:
        ...

    def charge(self, method: str, phone: str, otp: str, amount: Decimal) -> PaymentResult:
        ...


class SimulatedMobileMoneyGateway:
    """Stand-in for Flooz / TMoney / Orange Money. Accepts one fixed code."""

    def __init__(self, accepted_code: str = config.MOCK_OTP_CODE):
        self.accepted_code = accepted_code

    def request_otp(self, method: str, phone: str) -> None:
        logger.info("Mock OTP for %s via %s: %s", phone, method, self.accepted_code)

    def charge(self, method: str, phone: str, otp: str, amount: Decimal) -> PaymentResult:
        if otp != self.accepted_code:
            return PaymentResult(success=False, error="Invalid OTP code")
        return PaymentResult(
            success=True,
            transaction_id=f"TXN{int(time.time() * 1000)}",
            amount=amount,
        )


class PaymentSummary(BaseModel):
    order: Order
    session: PaymentSession
    subtotal: Money
    shipping: Money
    commission: Money
    total: Money


class PaymentService:
    def __init__(self, db: Database, gateway: MobileMoneyGateway):
        self.db = db
        self.gateway = gateway
        self.orders = OrderService(db)

    @property
    def sessions(self):
        return self.db[config.PAYMENT_SESSIONS]

    def _payable_order(self, order_id: str, buyer: User) -> Order:
        order = self.orders.load(order_id)
        if order.buyer_id != buyer.id:
            raise PermissionDeniedError("Access to this order is not allowed")
        return order

    def session(self, order_id: str, buyer: User) -> PaymentSession:
        """Current payment session for the order, fresh if none was started."""
        self._payable_order(order_id, buyer)
        doc = self.sessions.find_one({"order_id": order_id})
        if doc:
            return PaymentSession.from_document(doc)
        return PaymentSession(order_id=order_id, buyer_id=buyer.id)

    def summary(self, order_id: str, buyer: User, city: Optional[str] = None) -> PaymentSummary:
        order = self._payable_order(order_id, buyer)
        shipping = shipping_cost(city)
        return PaymentSummary(
            order=order,
            session=self.session(order_id, buyer),
            subtotal=order.total_amount,
            shipping=shipping,
            commission=order.commission.platform,
            total=order.total_amount + shipping,
        )

    def select_method(self, order_id: str, buyer: User, method: PaymentMethod) -> PaymentSession:
        session = self._open_session(order_id, buyer, "select a payment method")
        method = PaymentMethod(method).value
        if session.method != method:
            session.method = method
            session.state = PaymentState.METHOD_SELECTION.value
        return self._save(session)

    def request_otp(self, order_id: str, buyer: User, phone: str, confirm_phone: str) -> PaymentSession:
        session = self._open_session(order_id, buyer, "request a code")
        if not session.method:
            raise InvalidInputError("Choose a payment method first", field="method")
        if not phone or not confirm_phone:
            raise InvalidInputError("Phone number and confirmation are required", field="phone")
        if phone.strip() != confirm_phone.strip():
            raise InvalidInputError("Phone numbers do not match", field="confirm_phone")
        if not validate_phone(phone):
            raise InvalidInputError("Invalid phone number (format: +228XXXXXXXX)", field="phone")

        self.gateway.request_otp(session.method, phone.strip())
        session.phone = phone.strip()
        session.state = PaymentState.OTP_REQUESTED.value
        logger.info("OTP requested for order %s via %s", order_id, session.method)
        return self._save(session)

    def confirm(self, order_id: str, buyer: User, otp: str, shipping: ShippingAddress) -> Order:
        """Submit the one-time code. Marks the order confirmed and its commissions paid."""
        session = self.session(order_id, buyer)
        if session.state not in (PaymentState.OTP_REQUESTED.value, PaymentState.FAILED.value):
            raise InvalidPaymentStateError(session.state, "confirm payment")
        otp = (otp or "").strip()
        if len(otp) != config.OTP_LENGTH:
            raise InvalidInputError("Invalid OTP code", field="otp")

        order = self._payable_order(order_id, buyer)
        if order.status != OrderStatus.PENDING:
            raise InvalidPaymentStateError(order.status, "pay for this order")

        session.state = PaymentState.PROCESSING.value
        session.attempts += 1
        self._save(session)

        amount = payable_total(order, shipping.city)
        try:
            result = self.gateway.charge(session.method, session.phone, otp, amount)
            if result.success:
                self._mark_paid(order, session, result, shipping)
        except Exception as e:
            self._fail(session, str(e) or type(e).__name__)
            logger.exception("Payment error for order %s", order_id)
            raise
        if not result.success:
            self._fail(session, result.error)
            logger.warning("Payment failed for order %s: %s", order_id, result.error)
            raise PaymentFailedError(result.error or "Payment failed")

        session.state = PaymentState.PAID.value
        session.last_error = None
        self._save(session)
        logger.info("Order %s paid: %s %s XOF", order_id, result.transaction_id, result.amount)
        return self.orders.load(order_id)

    def cancel(self, order_id: str, buyer: User) -> None:
        session = self.session(order_id, buyer)
        if session.state == PaymentState.PAID.value:
            raise InvalidPaymentStateError(session.state, "cancel")
        self.sessions.delete_one({"order_id": order_id})
        logger.info("Payment cancelled for order %s", order_id)

    def _open_session(self, order_id: str, buyer: User, action: str) -> PaymentSession:
        session = self.session(order_id, buyer)
        if session.state in (PaymentState.PROCESSING.value, PaymentState.PAID.value):
            raise InvalidPaymentStateError(session.state, action)
        return session

    def _mark_paid(self, order: Order, session: PaymentSession, result: PaymentResult,
                   shipping: ShippingAddress) -> None:
        now = utcnow()
        updated = self.db[config.ORDERS].update_one(
            {"_id": to_object_id(order.id), "status": OrderStatus.PENDING.value},
            {
                "$set": {
                    "status": OrderStatus.CONFIRMED.value,
                    "payment_method": session.method,
                    "payment_status": "paid",
                    "transaction_id": result.transaction_id,
                    "paid_amount": to_bson(result.amount),
                    "payment_date": now,
                    "shipping_address": shipping.model_dump(),
                    "updated_at": now,
                }
            },
        )
        if updated.matched_count == 0:
            raise InvalidPaymentStateError(order.status, "pay for this order")
        self.db[config.COMMISSIONS].update_many(
            {"order_id": order.id},
            {"$set": {"status": CommissionStatus.PAID.value, "paid_at": now, "updated_at": now}},
        )

    def _fail(self, session: PaymentSession, error: Optional[str]) -> None:
        session.state = PaymentState.FAILED.value
        session.last_error = error
        self._save(session)

    def _save(self, session: PaymentSession) -> PaymentSession:
        now = utcnow()
        doc = session.to_document()
        doc.pop("created_at", None)
        doc["updated_at"] = now
        self.sessions.update_one(
            {"order_id": session.order_id},
            {"$set": doc, "$setOnInsert": {"created_at": now}},
            upsert=True,
        )
        return PaymentSession.from_document(self.sessions.find_one({"order_id": session.order_id}))
