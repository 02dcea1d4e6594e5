"""Tests for image uploads."""

import pytest

import config
from errors import InvalidInputError, NotFoundError
from storage import ImageStore, public_url


@pytest.fixture
def store(db):
    return ImageStore(db, max_bytes=1024)


class TestImageStore:
    def test_upload_returns_public_url(self, db, store, png):
        data = png((255, 0, 0), size=(4, 4))
        url = store.upload("seller-1", "wax.png", "image/png", data)
        file_id = url.rsplit("/", 1)[-1]
        assert url == public_url(file_id)
        assert url.startswith(config.PUBLIC_BASE_URL)
        assert db[config.FILES].count_documents({"owner_id": "seller-1"}) == 1

    def test_get_returns_bytes(self, store, png):
        data = png((0, 128, 0), size=(4, 4))
        file_id = store.upload("seller-1", "kente.png", "image/png", data).rsplit("/", 1)[-1]
        stored = store.get(file_id)
        assert stored.data == data
        assert stored.content_type == "image/png"
        assert stored.filename == "kente.png"

    @pytest.mark.parametrize("content_type", [None, "", "application/pdf", "text/plain"])
    def test_rejects_non_images(self, store, content_type):
        with pytest.raises(InvalidInputError):
            store.upload("seller-1", "doc", content_type, b"data")

    def test_rejects_empty(self, store):
        with pytest.raises(InvalidInputError):
            store.upload("seller-1", "empty.png", "image/png", b"")

    def test_rejects_oversize(self, db, store):
        with pytest.raises(InvalidInputError):
            store.upload("seller-1", "big.jpg", "image/jpeg", b"x" * 1025)
        assert db[config.FILES].count_documents({}) == 0

    @pytest.mark.parametrize("file_id", ["000000000000000000000000", "nope"])
    def test_unknown_file(self, store, file_id):
        with pytest.raises(NotFoundError):
            store.get(file_id)
