"""Utility helpers for image preprocessing and postprocessing.

The central piece is the template compositor: any source image is scaled to
the largest size that fits a 1280x720 canvas without cropping or stretching,
centered, and exported as PNG with the uncovered area left transparent. The
outpainting model fills that transparent area.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from panorama.services.errors import DecodeError, EncodeError, RenderContextUnavailable

TARGET_WIDTH = 1280
TARGET_HEIGHT = 720
TARGET_ASPECT_RATIO = TARGET_WIDTH / TARGET_HEIGHT
TEMPLATE_MIME_TYPE = "image/png"

_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
_FORMAT_MIME_TYPES = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
}


@dataclass(frozen=True, slots=True)
class Placement:
    """Scaled size and draw origin of the source inside the canvas."""

    width: float
    height: float
    offset_x: float
    offset_y: float

    def box(self) -> Tuple[int, int, int, int]:
        """Return the integer (x, y, width, height) draw rectangle."""
        width = max(1, round(self.width))
        height = max(1, round(self.height))
        return round(self.offset_x), round(self.offset_y), width, height


@dataclass(frozen=True, slots=True)
class SourceImage:
    """Decoded source image as supplied by upload or text-to-image."""

    data: bytes
    mime_type: str
    width: int
    height: int


@dataclass(frozen=True, slots=True)
class ImageTemplate:
    """Fixed-size canvas sent to the outpainting model."""

    data: bytes
    mime_type: str = TEMPLATE_MIME_TYPE
    width: int = TARGET_WIDTH
    height: int = TARGET_HEIGHT
    placement: Optional[Placement] = None

    @property
    def base64_data(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_uri(self) -> str:
        return encode_data_uri(self.data, self.mime_type)

    @classmethod
    def from_base64(cls, payload: str, mime_type: str = TEMPLATE_MIME_TYPE) -> "ImageTemplate":
        """Rebuild a template from its stored base64 payload."""
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecodeError(f"Stored template is not valid base64: {exc}") from exc
        return cls(data=data, mime_type=mime_type)


def compute_placement(
    width: float,
    height: float,
    target_size: Tuple[int, int] = (TARGET_WIDTH, TARGET_HEIGHT),
) -> Placement:
    """Fit a width x height image inside target_size, preserving aspect ratio."""
    if width <= 0 or height <= 0:
        raise DecodeError(f"Image has invalid dimensions {width}x{height}")

    target_width, target_height = target_size
    target_ratio = target_width / target_height
    source_ratio = width / height

    if source_ratio > target_ratio:
        draw_width = float(target_width)
        draw_height = target_width / source_ratio
    else:
        draw_height = float(target_height)
        draw_width = target_height * source_ratio

    return Placement(
        width=draw_width,
        height=draw_height,
        offset_x=(target_width - draw_width) / 2,
        offset_y=(target_height - draw_height) / 2,
    )


def open_image(data: bytes) -> Image.Image:
    """Decode bytes into a Pillow image with EXIF orientation applied."""
    if not data:
        raise DecodeError("Image payload is empty")
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"Could not decode image: {exc}") from exc
    source_format = image.format
    image = ImageOps.exif_transpose(image)
    # exif_transpose returns a copy, which drops the container format.
    image.format = source_format
    return image


def describe_source(data: bytes, image: Image.Image) -> SourceImage:
    """Return the SourceImage description of a decoded payload."""
    mime_type = _FORMAT_MIME_TYPES.get(image.format or "", "application/octet-stream")
    return SourceImage(data=data, mime_type=mime_type, width=image.width, height=image.height)


def prepare_image(image: Image.Image, target_size: Tuple[int, int] = (TARGET_WIDTH, TARGET_HEIGHT)) -> Image.Image:
    """Resize and pad the image onto a transparent canvas of target_size."""
    placement = compute_placement(image.width, image.height, target_size)
    try:
        canvas = Image.new("RGBA", target_size, (0, 0, 0, 0))
    except (ValueError, MemoryError) as exc:
        raise RenderContextUnavailable(f"Could not allocate {target_size} canvas: {exc}") from exc

    x, y, width, height = placement.box()
    source = image.convert("RGBA")
    if source.size != (width, height):
        source = source.resize((width, height), Image.Resampling.LANCZOS)
    canvas.alpha_composite(source, (x, y))
    return canvas


def compose_template(image: Image.Image) -> ImageTemplate:
    """Composite the image into the 1280x720 template and export it as PNG."""
    canvas = prepare_image(image)
    buffer = io.BytesIO()
    try:
        canvas.save(buffer, format="PNG")
    except (OSError, ValueError) as exc:
        raise EncodeError(f"Could not export template: {exc}") from exc

    data = buffer.getvalue()
    if not data.startswith(_PNG_SIGNATURE):
        raise EncodeError("Template export is not a PNG payload")
    if len(encode_data_uri(data, TEMPLATE_MIME_TYPE).split(",")) != 2:
        raise EncodeError("Template data URI is malformed")

    return ImageTemplate(
        data=data,
        placement=compute_placement(image.width, image.height),
    )


def build_template(data: bytes) -> Tuple[SourceImage, ImageTemplate]:
    """Decode an encoded source image and build its template."""
    image = open_image(data)
    return describe_source(data, image), compose_template(image)


async def create_image_template(data: bytes, timeout: float = 30.0) -> Tuple[SourceImage, ImageTemplate]:
    """Build the template off the event loop; a timeout counts as a decode failure."""
    try:
        return await asyncio.wait_for(asyncio.to_thread(build_template, data), timeout)
    except asyncio.TimeoutError as exc:
        raise DecodeError(f"Image decoding timed out after {timeout}s") from exc


def encode_data_uri(data: bytes, mime_type: str) -> str:
    """Return a ``data:`` URI embedding the payload as base64."""
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_uri(uri: str) -> Tuple[str, bytes]:
    """Split a base64 ``data:`` URI into its mime type and raw bytes."""
    if not uri or not uri.startswith("data:"):
        raise DecodeError("Result is not a data URI")
    parts = uri.split(",")
    if len(parts) != 2:
        raise DecodeError("Data URI must contain exactly one payload separator")
    header, payload = parts
    mime_type, _, encoding = header[len("data:"):].partition(";")
    if encoding != "base64" or not mime_type:
        raise DecodeError(f"Unsupported data URI header: {header}")
    try:
        return mime_type, base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"Data URI payload is not valid base64: {exc}") from exc


def data_uri_to_image(uri: str) -> Image.Image:
    """Decode a data URI into a Pillow image for display."""
    _, data = decode_data_uri(uri)
    return open_image(data)


def generate_thumbnail(image: Image.Image, max_size: Tuple[int, int] = (256, 256)) -> Image.Image:
    """Create a thumbnail suitable for history previews."""
    thumbnail = image.copy()
    thumbnail.thumbnail(max_size, Image.Resampling.LANCZOS)
    return thumbnail


def placeholder_thumbnail(size: Tuple[int, int] = (256, 144)) -> Image.Image:
    """Neutral tile shown for history entries whose image cannot be decoded."""
    return Image.new("RGB", size, (128, 128, 128))
