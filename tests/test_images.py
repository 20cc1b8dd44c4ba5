# =============================================================================
# tests/test_images.py - Image Pipeline Tests
# =============================================================================

import base64
import os
import re
import struct
from io import BytesIO

import pytest
from PIL import Image

from artfolio import images
from artfolio.errors import (
    DecodeError,
    ImageProcessingError,
    ImageTooLargeError,
    StorageError,
    UnsupportedFormatError,
)
from artfolio.images import ImagePipeline, derivative_name

from .conftest import data_uri, image_bytes

KEY_PATTERN = re.compile(r"^[0-9a-f]{32}_(original|medium|thumb)_\d+\.jpg$")


def stored_size(store, key):
    with Image.open(store.resolve(key)) as im:
        return im.size, im.format


# =============================================================================
# Decoding
# =============================================================================

class TestDecodeImageData:
    """Tests for ImagePipeline.decode_image_data."""

    @pytest.mark.asyncio
    async def test_data_uri(self, pipeline):
        raw = image_bytes(10, 10)
        assert await pipeline.decode_image_data(data_uri(raw)) == raw

    @pytest.mark.asyncio
    async def test_raw_base64(self, pipeline):
        raw = image_bytes(10, 10, "PNG")
        assert await pipeline.decode_image_data(base64.b64encode(raw).decode()) == raw

    @pytest.mark.asyncio
    async def test_local_file_path(self, pipeline, tmp_path):
        raw = image_bytes(10, 10)
        path = tmp_path / "upload.jpg"
        path.write_bytes(raw)
        assert await pipeline.decode_image_data(str(path)) == raw

    @pytest.mark.asyncio
    async def test_missing_file_is_decode_error(self, pipeline, tmp_path):
        with pytest.raises(DecodeError):
            await pipeline.decode_image_data(str(tmp_path / "nope.jpg"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", ["", "   ", "not base64!!", "data:image/png;base64", "data:image/png;base64,"])
    async def test_bad_payloads(self, pipeline, payload):
        with pytest.raises(DecodeError) as exc:
            await pipeline.decode_image_data(payload)
        assert exc.value.status_code == 400

    @pytest.mark.asyncio
    async def test_oversized_file_rejected_before_reading(self, store, tmp_path):
        small_limit = ImagePipeline(store, max_file_size=1024, local_root=tmp_path)
        huge = tmp_path / "huge.jpg"
        with open(huge, "wb") as f:
            f.truncate(20 * 1024 ** 3)  # sparse, nothing is written

        with pytest.raises(ImageTooLargeError) as exc:
            await small_limit.decode_image_data(str(huge))
        assert exc.value.details == {"size": 20 * 1024 ** 3, "max_size": 1024}

    @pytest.mark.asyncio
    async def test_directory_is_not_an_image_file(self, pipeline, tmp_path):
        (tmp_path / "folder").mkdir()
        with pytest.raises(DecodeError):
            await pipeline.decode_image_data(str(tmp_path / "folder"))

    @pytest.mark.asyncio
    @pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="needs named pipes")
    async def test_named_pipe_is_not_read(self, pipeline, tmp_path):
        fifo = tmp_path / "pipe.jpg"
        os.mkfifo(fifo)
        with pytest.raises(DecodeError):
            await pipeline.decode_image_data(str(fifo))

    @pytest.mark.asyncio
    async def test_path_outside_import_directory(self, pipeline):
        with pytest.raises(DecodeError):
            await pipeline.decode_image_data("/etc/hosts")

    @pytest.mark.asyncio
    async def test_paths_refused_without_import_directory(self, store, tmp_path):
        no_paths = ImagePipeline(store)
        path = tmp_path / "upload.jpg"
        path.write_bytes(image_bytes(10, 10))
        with pytest.raises(DecodeError):
            await no_paths.decode_image_data(str(path))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("as_data_uri", [True, False])
    async def test_oversized_base64_rejected_before_decoding(self, store, as_data_uri, monkeypatch):
        small_limit = ImagePipeline(store, max_file_size=100)
        raw = image_bytes(400, 300)
        payload = data_uri(raw) if as_data_uri else base64.b64encode(raw).decode()

        def no_decode(*args, **kwargs):
            raise AssertionError("payload should not be decoded")

        monkeypatch.setattr(images.base64, "b64decode", no_decode)
        with pytest.raises(ImageTooLargeError):
            await small_limit.decode_image_data(payload)

    @pytest.mark.asyncio
    async def test_base64_at_the_limit_is_decoded(self, store):
        raw = image_bytes(40, 30)
        exact = ImagePipeline(store, max_file_size=len(raw))
        assert await exact.decode_image_data(data_uri(raw)) == raw


# =============================================================================
# Validation
# =============================================================================

class TestValidateImage:
    """Tests for size and format checks."""

    def test_accepts_allowed_formats(self, pipeline):
        assert pipeline.validate_image(image_bytes(20, 20, "JPEG")) == "jpeg"
        assert pipeline.validate_image(image_bytes(20, 20, "PNG")) == "png"

    def test_too_large(self, store):
        small_limit = ImagePipeline(store, max_file_size=100)
        with pytest.raises(ImageTooLargeError) as exc:
            small_limit.validate_image(image_bytes(400, 300))
        assert exc.value.details["max_size"] == 100

    def test_format_not_on_allow_list(self, pipeline):
        with pytest.raises(UnsupportedFormatError) as exc:
            pipeline.validate_image(image_bytes(20, 20, "BMP"))
        assert exc.value.detected == "bmp"

    def test_not_an_image(self, pipeline):
        with pytest.raises(UnsupportedFormatError) as exc:
            pipeline.validate_image(b"definitely not an image")
        assert exc.value.detected == "unknown"

    def test_allow_list_is_configurable(self, store):
        png_only = ImagePipeline(store, allowed_formats=["PNG"])
        with pytest.raises(UnsupportedFormatError):
            png_only.validate_image(image_bytes(20, 20, "JPEG"))

    def test_corrupt_structure_is_decode_error(self, pipeline, monkeypatch):
        class Corrupt:
            format = "JPEG"

            def __enter__(self):
                return self

            def __exit__(self, *exc_info):
                return False

            def verify(self):
                raise struct.error("unpack requires a buffer of 4 bytes")

        monkeypatch.setattr(images.Image, "open", lambda fp: Corrupt())
        with pytest.raises(DecodeError) as exc:
            pipeline.validate_image(b"\xff\xd8\xff\xe0 truncated")
        assert exc.value.status_code == 400


# =============================================================================
# Derivatives
# =============================================================================

class TestProcessArtworkImage:
    """Tests for the three stored derivatives."""

    @pytest.mark.asyncio
    async def test_landscape_derivatives(self, pipeline, store, make_image):
        result = await pipeline.process_artwork_image(make_image(1600, 1200))

        assert len(set(result.keys())) == 3
        for key in result.keys():
            assert KEY_PATTERN.match(key)
            assert store.exists(key)

        assert stored_size(store, result.original) == ((1600, 1200), "JPEG")
        assert stored_size(store, result.medium) == ((800, 600), "JPEG")
        assert stored_size(store, result.thumbnail) == ((200, 200), "JPEG")

    @pytest.mark.asyncio
    async def test_medium_never_upscales(self, pipeline, store, make_image):
        result = await pipeline.process_artwork_image(make_image(300, 200))

        assert stored_size(store, result.medium)[0] == (300, 200)
        assert stored_size(store, result.thumbnail)[0] == (200, 200)

    @pytest.mark.asyncio
    async def test_portrait_medium_fits_box(self, pipeline, store, make_image):
        result = await pipeline.process_artwork_image(make_image(600, 1600))

        (width, height), _ = stored_size(store, result.medium)
        assert height == 600
        assert width <= 800

    @pytest.mark.asyncio
    async def test_png_with_alpha_becomes_jpeg(self, pipeline, store, make_image):
        result = await pipeline.process_artwork_image(make_image(50, 50, "PNG"))
        assert stored_size(store, result.original) == ((50, 50), "JPEG")

    @pytest.mark.asyncio
    async def test_shared_stem(self, pipeline, make_image):
        result = await pipeline.process_artwork_image(make_image(64, 64))
        stems = {k.split("_")[0] for k in result.keys()}
        assert len(stems) == 1

    @pytest.mark.asyncio
    async def test_rejected_payload_writes_nothing(self, pipeline, store):
        with pytest.raises(ImageProcessingError):
            await pipeline.process_artwork_image(data_uri(b"garbage bytes"))
        assert list(store.root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_failed_derivative_removes_the_others(self, pipeline, store, make_image, monkeypatch):
        def broken(data):
            raise OSError("encoder exploded")

        monkeypatch.setattr(images, "process_thumbnail_image", broken)

        with pytest.raises(ImageProcessingError):
            await pipeline.process_artwork_image(make_image(100, 100))
        assert list(store.root.iterdir()) == []

    def test_derivative_name(self):
        assert derivative_name("abc", "thumb", 1718000000000) == "abc_thumb_1718000000000.jpg"


# =============================================================================
# Object store
# =============================================================================

class TestLocalObjectStore:
    """Tests for LocalObjectStore."""

    @pytest.mark.asyncio
    async def test_write_read_delete(self, store):
        key = await store.write("nested/a_thumb_1.jpg", b"jpeg bytes")

        assert key == "nested/a_thumb_1.jpg"
        assert store.exists(key)
        assert await store.read(key) == b"jpeg bytes"

        assert await store.delete(key) is True
        assert not store.exists(key)
        assert await store.delete(key) is False

    @pytest.mark.asyncio
    async def test_read_missing(self, store):
        with pytest.raises(StorageError) as exc:
            await store.read("missing.jpg")
        assert exc.value.status_code == 500

    @pytest.mark.asyncio
    async def test_reads_back_stored_derivative(self, pipeline, store, make_image):
        result = await pipeline.process_artwork_image(make_image(64, 48))
        with Image.open(BytesIO(await store.read(result.original))) as im:
            assert im.size == (64, 48)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["../escape.jpg", "/abs.jpg", "https://cdn.example.com/x.jpg", ""])
    async def test_invalid_keys(self, store, key):
        assert store.resolve(key) is None
        with pytest.raises(StorageError):
            await store.write(key, b"x")


# =============================================================================
# Lookups & cleanup
# =============================================================================

class TestDimensionsAndDelete:

    @pytest.mark.asyncio
    async def test_dimensions_of_stored_image(self, pipeline, make_image):
        result = await pipeline.process_artwork_image(make_image(1024, 768))
        dims = await pipeline.get_image_dimensions(result.original)
        assert (dims.width, dims.height) == (1024, 768)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ref", ["https://cdn.example.com/a.jpg", "missing.jpg", "../outside.jpg", "/etc/hosts"])
    async def test_dimensions_unavailable(self, pipeline, ref):
        assert await pipeline.get_image_dimensions(ref) is None

    @pytest.mark.asyncio
    async def test_dimensions_of_non_image_file(self, pipeline, store):
        await store.write("notes.jpg", b"plain text")
        assert await pipeline.get_image_dimensions("notes.jpg") is None

    @pytest.mark.asyncio
    async def test_delete_image(self, pipeline, store, make_image):
        result = await pipeline.process_artwork_image(make_image(64, 64))
        await pipeline.delete_images(result.keys())
        assert not any(store.exists(k) for k in result.keys())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ref", [None, "", "already-gone.jpg", "/absolute/path.jpg"])
    async def test_delete_never_raises(self, pipeline, ref):
        await pipeline.delete_image(ref)


# =============================================================================
# Extras
# =============================================================================

class TestExtras:

    def test_convert_to_webp(self, pipeline):
        webp = pipeline.convert_to_webp(image_bytes(40, 30, "PNG"))
        with Image.open(BytesIO(webp)) as im:
            assert im.format == "WEBP"
            assert im.size == (40, 30)

    def test_convert_to_webp_rejects_garbage(self, pipeline):
        with pytest.raises(ImageProcessingError):
            pipeline.convert_to_webp(b"nope")

    def test_dominant_color_of_solid_image(self, pipeline):
        red = image_bytes(60, 60, "PNG", color=(255, 0, 0))
        colors = pipeline.extract_dominant_colors(red)
        assert colors[0] == "#ff0000"

    def test_dominant_colors_on_garbage(self, pipeline):
        assert pipeline.extract_dominant_colors(b"nope") == []
