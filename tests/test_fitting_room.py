"""Tests for the fitting room compositor."""

import io

import pytest
from PIL import Image

from errors import InvalidInputError
from fitting_room import CANVAS_SIZE, BodyDetection, FittingRoom

BLUE = (0, 0, 255)
RED = (255, 0, 0)


def close_to(pixel, expected, tolerance=2):
    return all(abs(a - b) <= tolerance for a, b in zip(pixel[:3], expected))


class RecordingDetector:
    def __init__(self, box=None):
        self.box = box
        self.resized = False

    def detect_body(self, image):
        return BodyDetection(bounding_box=self.box)

    def resize_clothes(self, clothes, body):
        self.resized = True
        return clothes


@pytest.fixture
def room(png):
    room = FittingRoom()
    room.load_user_photo(png(BLUE))
    room.load_product_image(png(RED))
    return room


class TestCompose:
    def test_placeholder_without_photo(self):
        canvas = FittingRoom().compose()
        assert canvas.size == CANVAS_SIZE
        assert canvas.getpixel((0, 0))[:3] == (243, 244, 246)

    def test_photo_is_fit_and_centered(self, png):
        room = FittingRoom()
        room.load_user_photo(png(BLUE))
        canvas = room.compose()
        # 40x40 scales to 400x400, leaving bands above and below
        assert canvas.getpixel((200, 250))[:3] == BLUE
        assert canvas.getpixel((200, 10))[:3] == (243, 244, 246)

    def test_garment_is_blended_over_photo(self, room):
        canvas = room.compose()
        assert close_to(canvas.getpixel((160, 150)), (204, 0, 51))

    def test_position_offset_moves_garment(self, room):
        canvas = room.compose(position_offset=100)
        assert canvas.getpixel((160, 150))[:3] == BLUE
        assert close_to(canvas.getpixel((260, 150)), (204, 0, 51))

    def test_size_scales_garment(self, room):
        canvas = room.compose(size_scale=50)
        # 75x100 garment starts at x=162
        assert canvas.getpixel((150, 130))[:3] == BLUE
        assert close_to(canvas.getpixel((170, 130)), (204, 0, 51))

    def test_detector_box_places_garment(self, png):
        detector = RecordingDetector(box=(10, 20, 100, 100))
        room = FittingRoom(detector)
        room.load_user_photo(png(BLUE))
        room.load_product_image(png(RED))
        canvas = room.compose()
        assert detector.resized
        assert close_to(canvas.getpixel((50, 100)), (204, 0, 51))

    def test_render_png(self, room):
        image = Image.open(io.BytesIO(room.render_png()))
        assert image.format == "PNG"
        assert image.size == CANVAS_SIZE


class TestLoading:
    def test_invalid_photo(self):
        with pytest.raises(InvalidInputError) as exc_info:
            FittingRoom().load_user_photo(b"not an image")
        assert exc_info.value.field == "photo"

    def test_invalid_product_image(self):
        with pytest.raises(InvalidInputError):
            FittingRoom().load_product_image(b"")
