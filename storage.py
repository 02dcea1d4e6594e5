"""Product image uploads kept in the files collection and served by URL."""
import logging
from typing import Optional

from bson import Binary
from pydantic import BaseModel
from pymongo.database import Database

import config
from database import to_object_id, utcnow
from errors import InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)


class StoredFile(BaseModel):
    id: str
    owner_id: str
    filename: str
    content_type: str
    data: bytes


def public_url(file_id: str) -> str:
    return f"{config.PUBLIC_BASE_URL}/api/files/{file_id}"


class ImageStore:
    def __init__(self, db: Database, max_bytes: int = config.MAX_IMAGE_BYTES):
        self.files = db[config.FILES]
        self.max_bytes = max_bytes

    def upload(self, owner_id: str, filename: str, content_type: Optional[str], data: bytes) -> str:
        """Store an image and return its public URL."""
        if not content_type or not content_type.startswith("image/"):
            raise InvalidInputError("Please select a valid image", field="file")
        if not data:
            raise InvalidInputError("Image is empty", field="file")
        if len(data) > self.max_bytes:
            raise InvalidInputError(
                f"Image must not exceed {self.max_bytes // (1024 * 1024)}MB", field="file"
            )
        result = self.files.insert_one({
            "owner_id": owner_id,
            "filename": filename,
            "content_type": content_type,
            "data": Binary(data),
            "size": len(data),
            "created_at": utcnow(),
        })
        file_id = str(result.inserted_id)
        logger.info("Stored %s (%d bytes) for %s as %s", filename, len(data), owner_id, file_id)
        return public_url(file_id)

    def get(self, file_id: str) -> StoredFile:
        oid = to_object_id(file_id)
        doc = self.files.find_one({"_id": oid}) if oid else None
        if not doc:
            raise NotFoundError("File", file_id)
        return StoredFile(
            id=file_id,
            owner_id=doc["owner_id"],
            filename=doc["filename"],
            content_type=doc["content_type"],
            data=bytes(doc["data"]),
        )
