"""
Shopping cart

A cart is an ordered list of lines, each keyed by product id and the exact
option set chosen (size, color, material). Prices are snapshotted when a line
is created and never re-priced. Carts owned by a signed-in user are written
through to a `CartStorage` after every mutation; a cart without an owner
lives in memory only.
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Protocol

from pymongo.database import Database

import config
from catalog import CatalogReader
from database import to_bson, utcnow
from errors import (
    InsufficientStockError,
    InvalidInputError,
    MalformedDocumentError,
    OutOfStockError,
    ProductNotFoundError,
)
from schemas import Cart, CartItem

logger = logging.getLogger(__name__)


class CartStorage(Protocol):
    def load(self, owner_id: str) -> List[CartItem]:
        ...

    def save(self, owner_id: str, items: List[CartItem]) -> None:
        ...


class MongoCartStorage:
    """One document per user in the carts collection."""

    def __init__(self, db: Database):
        self.collection = db[config.CARTS]

    def load(self, owner_id: str) -> List[CartItem]:
        doc = self.collection.find_one({"user_id": owner_id})
        if not doc:
            return []
        try:
            return Cart.from_document(doc).items
        except MalformedDocumentError:
            logger.exception("Error parsing cart for %s, starting empty", owner_id)
            return []

    def save(self, owner_id: str, items: List[CartItem]) -> None:
        now = utcnow()
        self.collection.update_one(
            {"user_id": owner_id},
            {
                "$set": {"items": to_bson([item.model_dump() for item in items]), "updated_at": now},
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
        )


class CartStore:
    def __init__(
        self,
        catalog: CatalogReader,
        storage: Optional[CartStorage] = None,
        owner_id: Optional[str] = None,
    ):
        self.catalog = catalog
        self.owner_id = owner_id
        self.storage = storage if owner_id else None
        self.items: List[CartItem] = self.storage.load(owner_id) if self.storage else []

    @property
    def persistent(self) -> bool:
        return self.storage is not None

    def is_empty(self) -> bool:
        return not self.items

    def find(self, product_id: str, options: Optional[Dict[str, str]] = None) -> Optional[CartItem]:
        for item in self.items:
            if item.matches(product_id, options):
                return item
        return None

    def add(self, product_id: str, quantity: int = 1, options: Optional[Dict[str, str]] = None) -> CartItem:
        """Add `quantity` units, merging into an existing line with the same options."""
        if quantity < 1:
            raise InvalidInputError("Quantity must be at least 1", field="quantity")
        product = self.catalog.get_product(product_id)
        if product.stock <= 0:
            raise OutOfStockError(product_id, product.stock, quantity)

        existing = self.find(product_id, options)
        wanted = quantity + (existing.quantity if existing else 0)
        if wanted > product.stock:
            raise OutOfStockError(product_id, product.stock, wanted)

        if existing:
            existing.quantity = wanted
            item = existing
        else:
            item = CartItem(
                product_id=product_id,
                name=product.name,
                price=product.price,
                image_url=product.image_url,
                seller_id=product.seller_id,
                seller_name=product.seller_name,
                quantity=quantity,
                options=dict(options or {}),
                added_at=utcnow(),
            )
            self.items.append(item)
        self._save()
        logger.info("Added %d x %s to cart (%s)", quantity, product_id, self.owner_id or "anonymous")
        return item

    def remove(self, product_id: str, options: Optional[Dict[str, str]] = None) -> bool:
        before = len(self.items)
        self.items = [item for item in self.items if not item.matches(product_id, options)]
        removed = len(self.items) != before
        if removed:
            self._save()
        return removed

    def update_quantity(
        self, product_id: str, delta: int, options: Optional[Dict[str, str]] = None
    ) -> Optional[CartItem]:
        """Change a line's quantity by `delta`. Returns the line, or None once removed."""
        item = self.find(product_id, options)
        if item is None:
            return None
        wanted = item.quantity + delta
        if wanted <= 0:
            self.remove(product_id, options)
            return None
        if delta > 0:
            # Not atomic with checkout: stock may move before the order is placed.
            available = self._live_stock(product_id)
            if available < wanted:
                raise OutOfStockError(product_id, available, wanted)
        item.quantity = wanted
        self._save()
        return item

    def clear(self) -> None:
        self.items = []
        self._save()

    def total(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal(0))

    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def check_stock(self, product_id: str, requested: int) -> bool:
        return self._live_stock(product_id) >= requested

    def validate_stock(self) -> None:
        """Re-read live stock for every line, failing on the first short one."""
        for item in self.items:
            if not self.check_stock(item.product_id, item.quantity):
                logger.warning("Stock check failed for %s (%d requested)", item.product_id, item.quantity)
                raise InsufficientStockError(item.product_id, item.name)

    def _live_stock(self, product_id: str) -> int:
        try:
            return self.catalog.get_product(product_id).stock
        except ProductNotFoundError:
            return 0

    def _save(self) -> None:
        if self.storage is not None:
            self.storage.save(self.owner_id, self.items)
