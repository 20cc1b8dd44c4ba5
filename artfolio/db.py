from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterator, Optional
from uuid import uuid4

from sqlalchemy import JSON, CheckConstraint, Column, UniqueConstraint
from sqlalchemy.engine import Engine, make_url
from sqlmodel import Field, Session, SQLModel, create_engine


def _new_id() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=_new_id, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str
    username: str = Field(index=True, unique=True)
    is_artist: bool = False
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    # denormalized; only changed through artfolio.counters.bump
    followers_count: int = 0
    following_count: int = 0
    artworks_count: int = 0
    likes_received_count: int = 0
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now, sa_column_kwargs={"onupdate": _now})


class Artwork(SQLModel, table=True):
    __tablename__ = "artworks"

    id: str = Field(default_factory=_new_id, primary_key=True)
    title: str
    description: Optional[str] = None
    image_url: str  # object-store key of the original derivative
    medium_url: str
    thumbnail_url: str
    artist_id: str = Field(index=True, foreign_key="users.id")
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    category: Optional[str] = Field(default=None, max_length=50)
    medium: Optional[str] = Field(default=None, max_length=100)
    width: Optional[int] = None
    height: Optional[int] = None
    likes_count: int = 0
    comments_count: int = 0
    views_count: int = 0
    is_public: bool = Field(default=True, index=True)
    is_featured: bool = False
    is_for_sale: bool = False
    price: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)
    currency: str = Field(default="CNY", max_length=3)
    created_at: datetime = Field(default_factory=_now, index=True)
    updated_at: datetime = Field(default_factory=_now, sa_column_kwargs={"onupdate": _now})


class Like(SQLModel, table=True):
    __tablename__ = "likes"
    __table_args__ = (UniqueConstraint("user_id", "artwork_id", name="uq_likes_user_artwork"),)

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(index=True, foreign_key="users.id")
    artwork_id: str = Field(index=True, foreign_key="artworks.id")
    created_at: datetime = Field(default_factory=_now)


class Follow(SQLModel, table=True):
    __tablename__ = "follows"
    __table_args__ = (
        UniqueConstraint("follower_id", "following_id", name="uq_follows_pair"),
        CheckConstraint("follower_id != following_id", name="ck_follows_not_self"),
    )

    id: str = Field(default_factory=_new_id, primary_key=True)
    follower_id: str = Field(index=True, foreign_key="users.id")
    following_id: str = Field(index=True, foreign_key="users.id")
    created_at: datetime = Field(default_factory=_now, index=True)


class Curation(SQLModel, table=True):
    __tablename__ = "curations"

    id: str = Field(default_factory=_new_id, primary_key=True)
    title: str
    description: Optional[str] = None
    curator_id: str = Field(index=True, foreign_key="users.id")
    # ordered, duplicate-free; artworks_count always equals its length
    artwork_ids: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    artworks_count: int = 0
    cover_image_url: Optional[str] = None
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    theme: Optional[str] = Field(default=None, max_length=50)
    category: Optional[str] = Field(default=None, max_length=50)
    views_count: int = 0
    likes_count: int = 0
    is_public: bool = Field(default=True, index=True)
    is_featured: bool = False
    version: int = 0  # bumped on every artwork_ids write
    created_at: datetime = Field(default_factory=_now, index=True)
    updated_at: datetime = Field(default_factory=_now, sa_column_kwargs={"onupdate": _now})


def make_engine(database_url: str, echo: bool = False) -> Engine:
    connect_args = {}
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        # sessions are opened inside worker threads (asyncio.to_thread)
        connect_args["check_same_thread"] = False
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, echo=echo, connect_args=connect_args)


def init_db(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)


def get_session(engine: Engine) -> Session:
    return Session(engine, expire_on_commit=False)


@contextmanager
def unit_of_work(engine: Engine) -> Iterator[Session]:
    """
    One transaction: commit when the block exits cleanly, roll back otherwise.

    Row mutations and the counter bumps they trigger go through the same
    unit of work so they land (or fail) together.
    """
    with get_session(engine) as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
