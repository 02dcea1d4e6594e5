"""
Virtual fitting room

Overlays a product picture on the buyer's photo so they get a rough idea of
the fit. There is no body fitting yet: placement is fixed on the upper body,
adjustable by size and horizontal offset. Body detection and garment
resizing go through an injected `BodyDetector`; the default one finds
nothing and leaves the garment untouched.
"""
import io
import logging
from typing import List, Optional, Protocol, Tuple

from PIL import Image, ImageDraw, UnidentifiedImageError
from pydantic import BaseModel, Field

from errors import InvalidInputError

logger = logging.getLogger(__name__)

CANVAS_SIZE = (400, 500)
BACKGROUND = "#f3f4f6"
PLACEHOLDER_COLOR = "#6b7280"
GUIDE_COLOR = "#16a34a"
PLACEHOLDER_TEXT = "Upload your photo to get started"

GARMENT_SIZE = (150, 200)
GARMENT_TOP = 100
GARMENT_OPACITY = 0.8
DASH = 5


class BodyDetection(BaseModel):
    body_points: List[Tuple[float, float]] = Field(default_factory=list)
    bounding_box: Optional[Tuple[int, int, int, int]] = None


class BodyDetector(Protocol):
    def detect_body(self, image: Image.Image) -> BodyDetection:
        ...

    def resize_clothes(self, clothes: Image.Image, body: BodyDetection) -> Image.Image:
        ...


class NullBodyDetector:
    def detect_body(self, image: Image.Image) -> BodyDetection:
        return BodyDetection()

    def resize_clothes(self, clothes: Image.Image, body: BodyDetection) -> Image.Image:
        return clothes


def open_image(data: bytes, field: str) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError):
        raise InvalidInputError("Please select a valid image", field=field)
    return image.convert("RGBA")


def fit_centered(image: Image.Image, size: Tuple[int, int]) -> Tuple[Image.Image, Tuple[int, int]]:
    width, height = size
    scale = min(width / image.width, height / image.height)
    scaled = image.resize((max(1, round(image.width * scale)), max(1, round(image.height * scale))))
    return scaled, ((width - scaled.width) // 2, (height - scaled.height) // 2)


def _dashed_line(draw: ImageDraw.ImageDraw, start: Tuple[int, int], end: Tuple[int, int]) -> None:
    (x0, y0), (x1, y1) = start, end
    length = max(abs(x1 - x0), abs(y1 - y0))
    step = 0
    while step < length:
        seg_end = min(step + DASH, length)
        if x0 == x1:
            draw.line([(x0, y0 + step), (x0, y0 + seg_end)], fill=GUIDE_COLOR, width=2)
        else:
            draw.line([(x0 + step, y0), (x0 + seg_end, y0)], fill=GUIDE_COLOR, width=2)
        step += DASH * 2


class FittingRoom:
    def __init__(self, detector: Optional[BodyDetector] = None, size: Tuple[int, int] = CANVAS_SIZE):
        self.detector = detector or NullBodyDetector()
        self.size = size
        self.user_image: Optional[Image.Image] = None
        self.product_image: Optional[Image.Image] = None

    def load_user_photo(self, data: bytes) -> None:
        self.user_image = open_image(data, "photo")

    def load_product_image(self, data: bytes) -> None:
        self.product_image = open_image(data, "product_image")

    def compose(self, size_scale: int = 100, position_offset: int = 0) -> Image.Image:
        canvas = Image.new("RGBA", self.size, BACKGROUND)
        draw = ImageDraw.Draw(canvas)
        if self.user_image is None:
            left, top, right, bottom = draw.textbbox((0, 0), PLACEHOLDER_TEXT)
            position = ((self.size[0] - (right - left)) // 2, (self.size[1] - (bottom - top)) // 2)
            draw.text(position, PLACEHOLDER_TEXT, fill=PLACEHOLDER_COLOR)
            return canvas

        photo, offset = fit_centered(self.user_image, self.size)
        canvas.paste(photo, offset, photo)
        if self.product_image is not None:
            self._overlay_garment(canvas, size_scale / 100, position_offset)
        return canvas

    def _overlay_garment(self, canvas: Image.Image, scale: float, position_offset: int) -> None:
        body = self.detector.detect_body(self.user_image)
        garment = self.detector.resize_clothes(self.product_image, body)

        width = max(1, round(GARMENT_SIZE[0] * scale))
        height = max(1, round(GARMENT_SIZE[1] * scale))
        if body.bounding_box:
            x, y = body.bounding_box[0] + position_offset, body.bounding_box[1]
        else:
            x, y = (self.size[0] - width) // 2 + position_offset, GARMENT_TOP
        garment = garment.resize((width, height)).convert("RGBA")
        garment.putalpha(garment.getchannel("A").point(lambda a: round(a * GARMENT_OPACITY)))
        canvas.paste(garment, (x, y), garment)
        logger.debug("Garment placed at (%d, %d) size %dx%d", x, y, width, height)

        draw = ImageDraw.Draw(canvas)
        right, bottom = x + width, y + height
        for start, end in (
            ((x, y), (right, y)),
            ((x, bottom), (right, bottom)),
            ((x, y), (x, bottom)),
            ((right, y), (right, bottom)),
            ((x + width // 2, y), (x + width // 2, bottom)),
            ((x, y + height // 2), (right, y + height // 2)),
        ):
            _dashed_line(draw, start, end)

    def render_png(self, size_scale: int = 100, position_offset: int = 0) -> bytes:
        buf = io.BytesIO()
        self.compose(size_scale, position_offset).save(buf, format="PNG")
        return buf.getvalue()
