from dataclasses import dataclass, field
from decimal import Decimal
from typing import Annotated, Generic, Literal, Optional, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

ArtworkCategory = Literal[
    "painting", "sculpture", "photography", "digital", "mixed-media",
    "drawing", "printmaking", "installation", "performance", "video", "other",
]
CurationTheme = Literal[
    "contemporary", "classical", "modern", "abstract", "landscape", "portrait",
    "still-life", "conceptual", "experimental", "traditional", "mixed",
]
CurationCategory = Literal[
    "exhibition", "collection", "showcase", "competition", "educational",
    "seasonal", "featured", "community", "artist-spotlight",
]
Currency = Literal["CNY", "USD", "EUR", "GBP", "JPY", "KRW", "HKD", "SGD"]
SortOrder = Literal["ASC", "DESC"]
SortField = Literal["created_at", "likes_count", "views_count", "title"]

MAX_PAGE_LIMIT = 100
TAG_MAX_LENGTH = 50

T = TypeVar("T")

def _check_tags(tags: list[str]) -> list[str]:
    cleaned = [t.strip() for t in tags]
    for t in cleaned:
        if not t or len(t) > TAG_MAX_LENGTH:
            raise ValueError(f"Each tag must be 1-{TAG_MAX_LENGTH} characters")
    return cleaned

Tags = Annotated[list[str], AfterValidator(_check_tags)]

class _Input(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

# -----------------------------------------------------------------------------
# Users
# -----------------------------------------------------------------------------
class UserCreate(_Input):
    email: str = Field(min_length=3, max_length=100, pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    name: str = Field(min_length=2, max_length=50)
    username: str = Field(min_length=3, max_length=30, pattern=r"^[a-zA-Z0-9_]+$")
    is_artist: bool = False
    bio: Optional[str] = Field(default=None, max_length=500)

# -----------------------------------------------------------------------------
# Artworks
# -----------------------------------------------------------------------------
class ArtworkCreate(_Input):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    image_data: str = Field(min_length=1, description="data URI, raw base64, or local file path")
    tags: Tags = Field(default_factory=list)
    category: Optional[ArtworkCategory] = None
    medium: Optional[str] = Field(default=None, max_length=100)
    price: Optional[Decimal] = Field(default=None, ge=0, le=Decimal("999999.99"), decimal_places=2)
    currency: Optional[Currency] = None
    is_for_sale: bool = False
    is_public: bool = True

class ArtworkUpdate(_Input):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    image_data: Optional[str] = Field(default=None, min_length=1)
    tags: Optional[Tags] = None
    category: Optional[ArtworkCategory] = None
    medium: Optional[str] = Field(default=None, max_length=100)
    price: Optional[Decimal] = Field(default=None, ge=0, le=Decimal("999999.99"), decimal_places=2)
    currency: Optional[Currency] = None
    is_for_sale: Optional[bool] = None
    is_public: Optional[bool] = None

class ArtworkQuery(_Input):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=MAX_PAGE_LIMIT)
    artist_id: Optional[str] = None
    tags: Optional[Tags] = None
    category: Optional[str] = None
    is_for_sale: Optional[bool] = None
    sort_by: SortField = "created_at"
    sort_order: SortOrder = "DESC"

# -----------------------------------------------------------------------------
# Curations
# -----------------------------------------------------------------------------
class CurationCreate(_Input):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    artwork_ids: list[str] = Field(min_length=1)
    cover_image_url: Optional[str] = Field(default=None, max_length=500)
    tags: Tags = Field(default_factory=list)
    theme: Optional[CurationTheme] = None
    category: Optional[CurationCategory] = None
    is_public: bool = True
    is_featured: bool = False

class CurationUpdate(_Input):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    artwork_ids: Optional[list[str]] = Field(default=None, min_length=1)
    cover_image_url: Optional[str] = Field(default=None, max_length=500)
    tags: Optional[Tags] = None
    theme: Optional[CurationTheme] = None
    category: Optional[CurationCategory] = None
    is_public: Optional[bool] = None
    is_featured: Optional[bool] = None

class CurationQuery(_Input):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=MAX_PAGE_LIMIT)
    curator_id: Optional[str] = None
    category: Optional[str] = None
    theme: Optional[str] = None
    sort_by: SortField = "created_at"
    sort_order: SortOrder = "DESC"

class AddArtworkRequest(_Input):
    artwork_id: str = Field(min_length=1)

class ReorderRequest(_Input):
    artwork_ids: list[str]

# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------
@dataclass
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

@dataclass(frozen=True)
class LikeToggle:
    is_liked: bool
    likes_count: int
