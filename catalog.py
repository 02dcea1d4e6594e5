"""Read-only access to active product listings."""
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

import config
from database import to_object_id
from errors import BackendUnavailableError, InvalidInputError, ProductNotFoundError
from schemas import Product, ProductPage

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def encode_cursor(product: Product) -> str:
    return f"{product.created_at.isoformat()}|{product.id}"


def decode_cursor(cursor: str) -> Tuple[datetime, ObjectId]:
    created, _, product_id = cursor.rpartition("|")
    oid = to_object_id(product_id)
    try:
        created_at = datetime.fromisoformat(created)
    except ValueError:
        created_at = None
    if created_at is None or oid is None:
        raise InvalidInputError(f"Invalid page cursor: {cursor}", field="cursor")
    return created_at, oid


class CatalogReader:
    def __init__(self, db: Database, page_size: int = config.PAGE_SIZE):
        self.db = db
        self.page_size = page_size

    @property
    def products(self):
        return self.db[config.PRODUCTS]

    def get(self, limit: Optional[int] = None, category: Optional[str] = None,
            search: Optional[str] = None) -> ProductPage:
        """First page of active products, newest first."""
        return self._page(self._filters(category, search), limit)

    def get_more(self, cursor: str, limit: Optional[int] = None, category: Optional[str] = None,
                 search: Optional[str] = None) -> ProductPage:
        """Page following `cursor`. An empty page means the catalog is exhausted."""
        created_at, oid = decode_cursor(cursor)
        if created_at.tzinfo is not None:
            # BSON dates carry no zone: compare in UTC
            created_at = created_at.astimezone(timezone.utc).replace(tzinfo=None)
        query = self._filters(category, search)
        query["$and"].append({
            "$or": [
                {"created_at": {"$lt": created_at}},
                {"created_at": created_at, "_id": {"$lt": oid}},
            ]
        })
        return self._page(query, limit)

    @staticmethod
    def _filters(category: Optional[str], search: Optional[str]) -> Dict[str, Any]:
        clauses: List[Dict[str, Any]] = [{"is_active": True}]
        if category:
            clauses.append({"category": category})
        if search and search.strip():
            pattern = re.escape(search.strip())
            clauses.append({
                "$or": [
                    {"name": {"$regex": pattern, "$options": "i"}},
                    {"description": {"$regex": pattern, "$options": "i"}},
                ]
            })
        return {"$and": clauses}

    def get_product(self, product_id: str) -> Product:
        oid = to_object_id(product_id)
        if oid is None:
            raise ProductNotFoundError(product_id)
        doc = self.products.find_one({"_id": oid})
        if not doc:
            raise ProductNotFoundError(product_id)
        return Product.from_document(doc)

    def _page(self, query: Dict[str, Any], limit: Optional[int]) -> ProductPage:
        limit = limit or self.page_size
        try:
            docs = list(self.products.find(query).sort(NEWEST_FIRST).limit(limit))
        except PyMongoError as e:
            logger.exception("Error loading products")
            raise BackendUnavailableError("Could not load products") from e
        items: List[Product] = [Product.from_document(d) for d in docs]
        next_cursor = encode_cursor(items[-1]) if items else None
        logger.debug("Loaded %d products", len(items))
        return ProductPage(items=items, next_cursor=next_cursor)
