# =============================================================================
# tests/conftest.py - Pytest Configuration
# =============================================================================
# Key features:
# - Points settings at a throwaway database and upload directory before any
#   artfolio module is imported
# - Provides a fresh SQLite engine, object store and services per test
# - Builds test images in memory with Pillow
# =============================================================================

import base64
import os
import tempfile
from io import BytesIO

# =============================================================================
# Set up test environment BEFORE any imports
# =============================================================================
# artfolio.main reads settings at import time

_TEST_ROOT = tempfile.mkdtemp(prefix="artfolio-tests-")
os.environ.setdefault("ARTFOLIO_DATABASE_URL", f"sqlite:///{_TEST_ROOT}/api.sqlite")
os.environ.setdefault("ARTFOLIO_UPLOAD_PATH", f"{_TEST_ROOT}/uploads")
os.environ.setdefault("ARTFOLIO_ENVIRONMENT", "development")
os.environ.setdefault("ARTFOLIO_LOG_LEVEL", "WARNING")

import pytest
from PIL import Image

from artfolio.artworks import ArtworkService
from artfolio.curations import CurationService
from artfolio.db import Artwork, User, init_db, make_engine, unit_of_work
from artfolio.images import ImagePipeline
from artfolio.social import SocialService
from artfolio.storage import LocalObjectStore


# =============================================================================
# Image helpers
# =============================================================================

def image_bytes(width: int, height: int, fmt: str = "JPEG", color=(180, 90, 40)) -> bytes:
    mode = "RGBA" if fmt == "PNG" else "RGB"
    fill = (*color, 255) if mode == "RGBA" else color
    buf = BytesIO()
    Image.new(mode, (width, height), fill).save(buf, format=fmt)
    return buf.getvalue()


def data_uri(data: bytes, subtype: str = "jpeg") -> str:
    return f"data:image/{subtype};base64,{base64.b64encode(data).decode()}"


@pytest.fixture
def make_image():
    """Factory: (width, height, fmt) -> data URI of a solid-colour image."""
    def _make(width: int = 640, height: int = 480, fmt: str = "JPEG") -> str:
        return data_uri(image_bytes(width, height, fmt), fmt.lower())
    return _make


# =============================================================================
# Storage & services
# =============================================================================

@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'artfolio.sqlite'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(tmp_path):
    return LocalObjectStore(tmp_path / "uploads")


@pytest.fixture
def pipeline(store, tmp_path):
    return ImagePipeline(store, max_file_size=5 * 1024 * 1024, local_root=tmp_path)


@pytest.fixture
def artwork_service(engine, pipeline):
    return ArtworkService(engine, pipeline)


@pytest.fixture
def curation_service(engine):
    return CurationService(engine, max_artworks=100)


@pytest.fixture
def social_service(engine):
    return SocialService(engine)


# =============================================================================
# Rows
# =============================================================================

def add_user(engine, username: str, is_artist: bool = False) -> User:
    with unit_of_work(engine) as s:
        user = User(email=f"{username}@example.com", name=username.title(), username=username, is_artist=is_artist)
        s.add(user)
        s.flush()
        return user


@pytest.fixture
def artist(engine):
    return add_user(engine, "monet", is_artist=True)


@pytest.fixture
def collector(engine):
    return add_user(engine, "collector")


@pytest.fixture
def curator(engine):
    return add_user(engine, "curator")


@pytest.fixture
def make_artwork_row(engine):
    """Insert an artwork row directly (no image files) and return it."""
    counter = iter(range(1, 10_000))

    def _make(artist_id: str, title: str | None = None, is_public: bool = True, **fields) -> Artwork:
        n = next(counter)
        with unit_of_work(engine) as s:
            artwork = Artwork(
                title=title or f"Study {n}",
                image_url=f"a{n}_original.jpg",
                medium_url=f"a{n}_medium.jpg",
                thumbnail_url=f"a{n}_thumb.jpg",
                artist_id=artist_id,
                is_public=is_public,
                **fields,
            )
            s.add(artwork)
            s.flush()
            return artwork

    return _make
