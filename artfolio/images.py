# =============================================================================
# artfolio/images.py - Artwork Image Pipeline
# =============================================================================
# Turns an uploaded image payload into three JPEG derivatives in the object
# store:
#
#   original   re-encoded at q90, no resize
#   medium     fit inside 800x600, never upscaled, q85
#   thumb      cover-cropped to exactly 200x200 around the centre, q80
#
# The three derivatives are produced concurrently and either all of them are
# stored or none are.
# =============================================================================

import asyncio
import base64
import binascii
import logging
import math
import stat
import struct
import time
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Callable, Iterable
from uuid import uuid4

from PIL import Image, ImageOps, UnidentifiedImageError

from .config import Settings
from .errors import (
    DecodeError,
    ImageProcessingError,
    ImageTooLargeError,
    StorageError,
    UnsupportedFormatError,
)
from .storage import LocalObjectStore

logger = logging.getLogger(__name__)

DATA_URI_PREFIX = "data:image/"
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024
DEFAULT_ALLOWED_FORMATS = ("jpeg", "png", "webp", "gif")

OUTPUT_FORMAT = "JPEG"
OUTPUT_EXTENSION = ".jpg"

ORIGINAL_QUALITY = 90
MEDIUM_SIZE = (800, 600)
MEDIUM_QUALITY = 85
THUMBNAIL_SIZE = (200, 200)
THUMBNAIL_QUALITY = 80

# Pillow reading errors that mean "this input is not a usable image"
_IMAGE_ERRORS = (
    OSError,
    ValueError,
    SyntaxError,
    EOFError,
    IndexError,
    TypeError,
    struct.error,
    Image.DecompressionBombError,
)


@dataclass(frozen=True)
class ProcessedImages:
    original: str
    medium: str
    thumbnail: str

    def keys(self) -> list[str]:
        return [self.original, self.medium, self.thumbnail]


@dataclass(frozen=True)
class ImageDimensions:
    width: int
    height: int


# -----------------------------------------------------------------------------
# Derivative renderers (pure: bytes in, JPEG bytes out)
# -----------------------------------------------------------------------------

def _open_rgb(data: bytes) -> Image.Image:
    im = Image.open(BytesIO(data))
    im.load()
    if im.mode != "RGB":
        im = im.convert("RGB")
    return im


def _encode(im: Image.Image, quality: int) -> bytes:
    buf = BytesIO()
    im.save(buf, format=OUTPUT_FORMAT, quality=quality, progressive=True, optimize=True)
    return buf.getvalue()


def process_original_image(data: bytes) -> bytes:
    return _encode(_open_rgb(data), ORIGINAL_QUALITY)


def process_medium_image(data: bytes) -> bytes:
    im = _open_rgb(data)
    # thumbnail() keeps the aspect ratio and never enlarges
    im.thumbnail(MEDIUM_SIZE, Image.Resampling.LANCZOS)
    return _encode(im, MEDIUM_QUALITY)


def process_thumbnail_image(data: bytes) -> bytes:
    im = _open_rgb(data)
    im = ImageOps.fit(im, THUMBNAIL_SIZE, method=Image.Resampling.LANCZOS, centering=(0.5, 0.5))
    return _encode(im, THUMBNAIL_QUALITY)


def derivative_name(stem: str, variant: str, timestamp_ms: int) -> str:
    return f"{stem}_{variant}_{timestamp_ms}{OUTPUT_EXTENSION}"


def _b64decode(encoded: str, max_size: int) -> bytes:
    compact = "".join(encoded.split())
    # 4 base64 characters carry 3 bytes
    if len(compact) > math.ceil(max_size / 3) * 4:
        raise ImageTooLargeError(len(compact) * 3 // 4, max_size)
    try:
        data = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 image data: {e}") from e
    if not data:
        raise DecodeError("Invalid base64 image data: empty payload")
    return data


class ImagePipeline:
    """
    Stateless image processor bound to an object store and an upload policy.

    Args:
        store: where derivatives are written
        max_file_size: largest accepted decoded payload, in bytes
        allowed_formats: Pillow format names (case-insensitive)
        local_root: directory that local file path payloads must lie in;
            None refuses path payloads
    """

    def __init__(
        self,
        store: LocalObjectStore,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        allowed_formats: Iterable[str] = DEFAULT_ALLOWED_FORMATS,
        local_root: Path | str | None = None,
    ):
        self.store = store
        self.max_file_size = max_file_size
        self.allowed_formats = [f.lower() for f in allowed_formats]
        self.local_root = Path(local_root).resolve() if local_root else None

    @classmethod
    def from_settings(cls, settings: Settings, store: LocalObjectStore | None = None) -> "ImagePipeline":
        return cls(
            store or LocalObjectStore(settings.upload_root),
            max_file_size=settings.MAX_FILE_SIZE,
            allowed_formats=settings.allowed_image_formats_list,
            local_root=settings.IMPORT_PATH or None,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def process_artwork_image(self, payload: str) -> ProcessedImages:
        """
        Decode, validate and derive the three stored variants of an image.

        Raises:
            DecodeError: payload is not decodable
            ImageTooLargeError: decoded payload exceeds max_file_size
            UnsupportedFormatError: not a raster format on the allow-list
            ImageProcessingError: Pillow could not render a derivative
            StorageError: a derivative could not be written
        """
        data = await self.decode_image_data(payload)
        await asyncio.to_thread(self.validate_image, data)

        stem = uuid4().hex
        timestamp_ms = int(time.time() * 1000)
        jobs: list[tuple[str, Callable[[bytes], bytes]]] = [
            (derivative_name(stem, "original", timestamp_ms), process_original_image),
            (derivative_name(stem, "medium", timestamp_ms), process_medium_image),
            (derivative_name(stem, "thumb", timestamp_ms), process_thumbnail_image),
        ]

        results = await asyncio.gather(
            *(self._derive(data, key, render) for key, render in jobs),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            written = [r for r in results if isinstance(r, str)]
            await self.delete_images(written)
            raise failures[0]

        original, medium, thumbnail = results
        logger.info(f"Stored image derivatives {stem} ({len(data)} bytes in)")
        return ProcessedImages(original=original, medium=medium, thumbnail=thumbnail)

    async def decode_image_data(self, payload: str) -> bytes:
        """
        Accepts a data URI, a local file path ("./" or "/"), or raw base64.

        Payloads larger than max_file_size are rejected before they are
        decoded or read in full. Local paths are only accepted below
        local_root.
        """
        if not isinstance(payload, str) or not payload.strip():
            raise DecodeError("Image data is empty")

        if payload.startswith(DATA_URI_PREFIX):
            _, sep, encoded = payload.partition(",")
            if not sep:
                raise DecodeError("Invalid base64 image data: data URI has no payload")
            return await asyncio.to_thread(_b64decode, encoded, self.max_file_size)

        if payload.startswith(("./", "/")):
            return await asyncio.to_thread(self._read_local_file, payload)

        return await asyncio.to_thread(_b64decode, payload, self.max_file_size)

    def _read_local_file(self, payload: str) -> bytes:
        if self.local_root is None:
            raise DecodeError("Local file paths are not accepted as image data")

        path = Path(payload).resolve()
        if not path.is_relative_to(self.local_root):
            raise DecodeError(f"Image file is outside the import directory: {payload}")
        try:
            st = path.stat()
        except OSError as e:
            raise DecodeError(f"Failed to read image file: {e}") from e
        if not stat.S_ISREG(st.st_mode):
            raise DecodeError(f"Not a regular file: {payload}")
        if st.st_size > self.max_file_size:
            raise ImageTooLargeError(st.st_size, self.max_file_size)

        try:
            with open(path, "rb") as f:
                data = f.read(self.max_file_size + 1)
        except OSError as e:
            raise DecodeError(f"Failed to read image file: {e}") from e
        # the file may have grown since stat()
        if len(data) > self.max_file_size:
            raise ImageTooLargeError(len(data), self.max_file_size)
        return data

    def validate_image(self, data: bytes) -> str:
        """Check size and format; returns the detected format name (lower case)."""
        if len(data) > self.max_file_size:
            raise ImageTooLargeError(len(data), self.max_file_size)

        try:
            with Image.open(BytesIO(data)) as im:
                detected = (im.format or "unknown").lower()
                im.verify()
        except UnidentifiedImageError as e:
            raise UnsupportedFormatError("unknown", self.allowed_formats) from e
        except _IMAGE_ERRORS as e:
            raise DecodeError(f"Corrupt image data: {e}") from e

        if detected not in self.allowed_formats:
            raise UnsupportedFormatError(detected, self.allowed_formats)
        return detected

    async def get_image_dimensions(self, ref: str) -> ImageDimensions | None:
        """Pixel size of a stored image, or None if ref is not a readable local object."""
        path = self.store.resolve(ref)
        if path is None:
            return None

        def _measure():
            with Image.open(path) as im:
                return im.size

        try:
            width, height = await asyncio.to_thread(_measure)
        except _IMAGE_ERRORS as e:
            logger.warning(f"Failed to get image dimensions for {ref}: {e}")
            return None
        if width < 1 or height < 1:
            return None
        return ImageDimensions(width=width, height=height)

    async def delete_image(self, ref: str | None) -> None:
        """Best-effort removal. Never raises; a missing file is fine."""
        if not ref:
            return
        try:
            removed = await self.store.delete(ref)
        except StorageError as e:
            logger.warning(f"Failed to delete image {ref}: {e.message}")
            return
        if not removed:
            logger.debug(f"Image already gone: {ref}")

    async def delete_images(self, refs: Iterable[str | None]) -> None:
        await asyncio.gather(*(self.delete_image(ref) for ref in refs))

    # -------------------------------------------------------------------------
    # Extras
    # -------------------------------------------------------------------------

    def convert_to_webp(self, data: bytes, quality: int = 80) -> bytes:
        try:
            im = _open_rgb(data)
        except _IMAGE_ERRORS as e:
            raise ImageProcessingError(f"Image processing failed: {e}") from e
        buf = BytesIO()
        im.save(buf, format="WEBP", quality=quality, method=6)
        return buf.getvalue()

    def extract_dominant_colors(self, data: bytes, count: int = 5) -> list[str]:
        """Most frequent colours as "#rrggbb", most common first. Empty list on failure."""
        try:
            im = _open_rgb(data)
            im.thumbnail((150, 150))
            quantized = im.quantize(colors=count)
            palette = quantized.getpalette() or []
            colors = sorted(quantized.getcolors() or [], reverse=True)
        except _IMAGE_ERRORS as e:
            logger.warning(f"Failed to extract dominant colors: {e}")
            return []

        result = []
        for _, index in colors[:count]:
            r, g, b = palette[index * 3:index * 3 + 3]
            result.append(f"#{r:02x}{g:02x}{b:02x}")
        return result

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _derive(self, data: bytes, key: str, render: Callable[[bytes], bytes]) -> str:
        try:
            encoded = await asyncio.to_thread(render, data)
        except _IMAGE_ERRORS as e:
            raise ImageProcessingError(f"Image processing failed: {e}") from e
        return await self.store.write(key, encoded)
