# =============================================================================
# artfolio/artworks.py - Artwork Lifecycle
# =============================================================================
# Create / read / update / delete artworks and toggle likes.
#
# Ordering rules that keep rows and image files consistent:
#   create   derivatives stored -> row inserted (+ owner counter)
#   update   new derivatives stored -> row updated -> old derivatives removed
#   delete   derivatives removed (best effort) -> row deleted (+ counters)
# A row never points at a file that was not written first.
# =============================================================================

import asyncio
import logging
from typing import Any, Optional

from sqlalchemy import String, cast, delete, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import counters
from .db import Artwork, Like, User, get_session, unit_of_work
from .errors import (
    ArtworkNotFoundError,
    LikeConflictError,
    NotFoundOrUnauthorizedError,
    OwnerNotFoundError,
    ValidationError,
)
from .images import ImagePipeline, ProcessedImages
from .schemas import ArtworkCreate, ArtworkQuery, ArtworkUpdate, LikeToggle, Page
from .utils import paginate

logger = logging.getLogger(__name__)

# columns a partial update may not null out
_REQUIRED_FIELDS = {"title", "tags", "is_for_sale", "is_public", "currency"}


def _tag_match(tag: str):
    # tags are stored as a JSON array; match one quoted element
    return cast(Artwork.tags, String).contains(f'"{tag}"', autoescape=True)


def _visible(artwork: Optional[Artwork], viewer_id: Optional[str]) -> bool:
    return artwork is not None and (artwork.is_public or artwork.artist_id == viewer_id)


class ArtworkService:
    """
    Artwork lifecycle on top of the datastore and the image pipeline.

    All public methods are coroutines; database work runs in a worker thread
    inside one transaction per step.
    """

    def __init__(self, engine: Engine, pipeline: ImagePipeline, default_currency: str = "CNY"):
        self.engine = engine
        self.pipeline = pipeline
        self.default_currency = default_currency

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    async def create_artwork(self, artist_id: str, data: ArtworkCreate) -> Artwork:
        """
        Process the image, then insert the artwork and bump the artist's count.

        Raises:
            OwnerNotFoundError: artist_id is not a user
            ImageProcessingError: the image payload was rejected
        """
        await asyncio.to_thread(self._require_user, artist_id)

        images = await self.pipeline.process_artwork_image(data.image_data)
        dimensions = await self.pipeline.get_image_dimensions(images.original)

        try:
            artwork = await asyncio.to_thread(self._insert, artist_id, data, images, dimensions)
        except Exception:
            await self.pipeline.delete_images(images.keys())
            raise

        logger.info(f"Artwork {artwork.id} created by {artist_id}")
        return artwork

    def _require_user(self, user_id: str) -> None:
        with get_session(self.engine) as s:
            if s.get(User, user_id) is None:
                raise OwnerNotFoundError(user_id)

    def _insert(self, artist_id, data: ArtworkCreate, images: ProcessedImages, dimensions) -> Artwork:
        with unit_of_work(self.engine) as s:
            artwork = Artwork(
                title=data.title,
                description=data.description,
                image_url=images.original,
                medium_url=images.medium,
                thumbnail_url=images.thumbnail,
                artist_id=artist_id,
                tags=list(data.tags),
                category=data.category,
                medium=data.medium,
                width=dimensions.width if dimensions else None,
                height=dimensions.height if dimensions else None,
                price=data.price,
                currency=data.currency or self.default_currency,
                is_for_sale=data.is_for_sale,
                is_public=data.is_public,
            )
            s.add(artwork)
            s.flush()
            if counters.bump(s, User, artist_id, artworks_count=1) == 0:
                raise OwnerNotFoundError(artist_id)
            return artwork

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    async def get_artwork(self, artwork_id: str, viewer_id: Optional[str] = None) -> tuple[Artwork, Optional[bool]]:
        """
        Fetch one artwork and count the view.

        Every successful read adds one view, repeat viewers included. Private
        artworks are only visible to their artist. Returns the artwork and,
        when a viewer is given, whether the viewer likes it.
        """
        return await asyncio.to_thread(self._read, artwork_id, viewer_id)

    def _read(self, artwork_id, viewer_id):
        with unit_of_work(self.engine) as s:
            artwork = s.get(Artwork, artwork_id)
            if not _visible(artwork, viewer_id):
                raise ArtworkNotFoundError(artwork_id)
            counters.bump(s, Artwork, artwork_id, views_count=1)
            s.refresh(artwork)

            is_liked = None
            if viewer_id:
                is_liked = self._find_like(s, artwork_id, viewer_id) is not None
            return artwork, is_liked

    async def get_artworks(self, query: ArtworkQuery) -> Page[Artwork]:
        return await asyncio.to_thread(self._list, query)

    def _list(self, query: ArtworkQuery) -> Page[Artwork]:
        stmt = select(Artwork).where(Artwork.is_public == True)  # noqa: E712
        if query.artist_id:
            stmt = stmt.where(Artwork.artist_id == query.artist_id)
        if query.tags:
            stmt = stmt.where(or_(*[_tag_match(t) for t in query.tags]))
        if query.category:
            stmt = stmt.where(Artwork.category == query.category)
        if query.is_for_sale is not None:
            stmt = stmt.where(Artwork.is_for_sale == query.is_for_sale)

        column = getattr(Artwork, query.sort_by)
        order = column.asc() if query.sort_order == "ASC" else column.desc()
        return self._paginate(stmt, [order, Artwork.id], query.page, query.limit)

    async def get_featured_artworks(self, limit: int = 10) -> list[Artwork]:
        def _featured():
            with get_session(self.engine) as s:
                stmt = (
                    select(Artwork)
                    .where(Artwork.is_featured == True, Artwork.is_public == True)  # noqa: E712
                    .order_by(Artwork.created_at.desc())
                    .limit(limit)
                )
                return list(s.exec(stmt).all())

        return await asyncio.to_thread(_featured)

    async def search_artworks(self, query: str, page: int = 1, limit: int = 20) -> Page[Artwork]:
        """Case-insensitive substring match on title/description, exact tag match."""
        q = (query or "").strip()
        if not q:
            raise ValidationError("Search query is required")

        stmt = select(Artwork).where(
            Artwork.is_public == True,  # noqa: E712
            or_(
                Artwork.title.icontains(q, autoescape=True),
                Artwork.description.icontains(q, autoescape=True),
                _tag_match(q),
            ),
        )
        order = [(Artwork.likes_count + Artwork.views_count).desc(), Artwork.id]
        return await asyncio.to_thread(self._paginate, stmt, order, page, limit)

    def _paginate(self, stmt, order_by, page: int, limit: int) -> Page[Artwork]:
        with get_session(self.engine) as s:
            return paginate(s, stmt, order_by, page, limit)

    # -------------------------------------------------------------------------
    # Update / Delete
    # -------------------------------------------------------------------------

    async def update_artwork(self, artwork_id: str, artist_id: str, data: ArtworkUpdate) -> Artwork:
        """
        Apply a partial update. A new image replaces all three derivatives.

        The old files are removed only after the row points at the new ones;
        if anything fails before that, the artwork and its files are untouched.

        Raises:
            NotFoundOrUnauthorizedError: no artwork with this id for this artist
            ImageProcessingError: the new image payload was rejected
        """
        await asyncio.to_thread(self._get_owned, artwork_id, artist_id)

        changes: dict[str, Any] = {
            k: v for k, v in data.model_dump(exclude_unset=True, exclude={"image_data"}).items()
            if v is not None or k not in _REQUIRED_FIELDS
        }

        new_images = None
        if data.image_data:
            new_images = await self.pipeline.process_artwork_image(data.image_data)
            dimensions = await self.pipeline.get_image_dimensions(new_images.original)
            changes.update(
                image_url=new_images.original,
                medium_url=new_images.medium,
                thumbnail_url=new_images.thumbnail,
                width=dimensions.width if dimensions else None,
                height=dimensions.height if dimensions else None,
            )

        try:
            artwork, old_keys = await asyncio.to_thread(self._apply_update, artwork_id, artist_id, changes)
        except Exception:
            if new_images:
                await self.pipeline.delete_images(new_images.keys())
            raise

        if new_images:
            await self.pipeline.delete_images(old_keys)
        logger.info(f"Artwork {artwork_id} updated ({', '.join(sorted(changes)) or 'no fields'})")
        return artwork

    def _apply_update(self, artwork_id, artist_id, changes):
        with unit_of_work(self.engine) as s:
            artwork = self._owned(s, artwork_id, artist_id)
            old_keys = [artwork.image_url, artwork.medium_url, artwork.thumbnail_url]
            for key, value in changes.items():
                setattr(artwork, key, value)
            s.add(artwork)
            s.flush()
            s.refresh(artwork)
            return artwork, old_keys

    async def delete_artwork(self, artwork_id: str, artist_id: str) -> None:
        """
        Remove the image files, then the row, its likes and the counters.

        File removal happens first: a crash in between leaves a row whose
        images are gone rather than files nothing refers to.
        """
        artwork = await asyncio.to_thread(self._get_owned, artwork_id, artist_id)
        await self.pipeline.delete_images([artwork.image_url, artwork.medium_url, artwork.thumbnail_url])
        await asyncio.to_thread(self._delete_row, artwork_id, artist_id)
        logger.info(f"Artwork {artwork_id} deleted by {artist_id}")

    def _delete_row(self, artwork_id, artist_id) -> None:
        with unit_of_work(self.engine) as s:
            artwork = self._owned(s, artwork_id, artist_id)
            removed_likes = s.execute(delete(Like).where(Like.artwork_id == artwork_id)).rowcount
            s.delete(artwork)
            s.flush()
            counters.bump(s, User, artist_id, artworks_count=-1, likes_received_count=-removed_likes)

    def _get_owned(self, artwork_id, artist_id) -> Artwork:
        with get_session(self.engine) as s:
            return self._owned(s, artwork_id, artist_id)

    @staticmethod
    def _owned(s: Session, artwork_id: str, artist_id: str) -> Artwork:
        artwork = s.exec(
            select(Artwork).where(Artwork.id == artwork_id, Artwork.artist_id == artist_id)
        ).first()
        if artwork is None:
            raise NotFoundOrUnauthorizedError("Artwork not found or unauthorized")
        return artwork

    # -------------------------------------------------------------------------
    # Likes
    # -------------------------------------------------------------------------

    async def toggle_like(self, artwork_id: str, user_id: str) -> LikeToggle:
        """
        Like the artwork if the user has not, otherwise unlike it.

        The like row and both counters (artwork likes, artist likes received)
        change in one transaction; the returned count is re-read afterwards.
        """
        return await asyncio.to_thread(self._toggle_like, artwork_id, user_id)

    def _toggle_like(self, artwork_id, user_id) -> LikeToggle:
        with unit_of_work(self.engine) as s:
            artwork = s.get(Artwork, artwork_id)
            if not _visible(artwork, user_id):
                raise ArtworkNotFoundError(artwork_id)

            existing = self._find_like(s, artwork_id, user_id)
            if existing:
                s.delete(existing)
                s.flush()
                delta = -1
            else:
                s.add(Like(user_id=user_id, artwork_id=artwork_id))
                try:
                    s.flush()
                except IntegrityError as e:
                    raise LikeConflictError("Like was changed concurrently, try again") from e
                delta = 1

            counters.bump(s, Artwork, artwork_id, likes_count=delta)
            counters.bump(s, User, artwork.artist_id, likes_received_count=delta)
            likes_count = counters.read(s, Artwork, artwork_id, "likes_count")
            return LikeToggle(is_liked=delta > 0, likes_count=likes_count)

    @staticmethod
    def _find_like(s: Session, artwork_id: str, user_id: str) -> Optional[Like]:
        return s.exec(select(Like).where(Like.user_id == user_id, Like.artwork_id == artwork_id)).first()
