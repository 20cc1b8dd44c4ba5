# =============================================================================
# artfolio/curations.py - Curation Ordering
# =============================================================================
# A curation holds an ordered, duplicate-free list of artwork ids. The list
# rules live in three pure functions (append / remove / reorder); the service
# applies them to stored curations.
#
# Concurrent edits: each list write is conditional on the version that was
# read (WHERE version = :seen) and bumps it. A write that loses the race
# raises StaleCurationError and changes nothing.
#
# Artwork membership is checked when an id is inserted. Artworks that later
# become private or are deleted stay in the list and are skipped when the
# curation's artworks are listed.
# =============================================================================

import asyncio
import logging
from typing import Any, Optional, Sequence

from sqlalchemy import String, cast, or_, update
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from . import counters
from .db import Artwork, Curation, User, get_session, unit_of_work
from .errors import (
    ArtworkNotFoundError,
    ArtworkNotInCurationError,
    CurationNotFoundError,
    DuplicateArtworkError,
    InvalidArtworkSetError,
    InvalidOrderError,
    NotFoundOrUnauthorizedError,
    OwnerNotFoundError,
    StaleCurationError,
    ValidationError,
)
from .schemas import CurationCreate, CurationQuery, CurationUpdate, Page
from .utils import page_offset, paginate

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = {"title", "tags", "is_public", "is_featured"}


# -----------------------------------------------------------------------------
# List rules
# -----------------------------------------------------------------------------

def append_artwork(artwork_ids: Sequence[str], artwork_id: str) -> list[str]:
    if artwork_id in artwork_ids:
        raise DuplicateArtworkError(artwork_id)
    return [*artwork_ids, artwork_id]


def remove_artwork(artwork_ids: Sequence[str], artwork_id: str) -> list[str]:
    if artwork_id not in artwork_ids:
        raise ArtworkNotInCurationError(artwork_id)
    return [a for a in artwork_ids if a != artwork_id]


def reorder_artworks(artwork_ids: Sequence[str], new_order: Sequence[str]) -> list[str]:
    """
    Accept new_order only if it is a permutation of artwork_ids.

    Same length, and every current id present. Since the current ids are
    unique, this also rules out duplicates and foreign ids in new_order.
    """
    proposed = set(new_order)
    current = set(artwork_ids)
    missing = [a for a in artwork_ids if a not in proposed]
    if missing or len(new_order) != len(artwork_ids):
        extra = [a for a in dict.fromkeys(new_order) if a not in current]
        raise InvalidOrderError(missing=missing, extra=extra)
    return list(new_order)


class CurationService:
    """Curation CRUD and ordering, scoped by curator ownership."""

    def __init__(self, engine: Engine, max_artworks: int = 100):
        self.engine = engine
        self.max_artworks = max_artworks

    # -------------------------------------------------------------------------
    # Create / Update / Delete
    # -------------------------------------------------------------------------

    async def create_curation(self, curator_id: str, data: CurationCreate) -> Curation:
        """
        Raises:
            OwnerNotFoundError: curator_id is not a user
            InvalidArtworkSetError: some ids are unknown, private or repeated
        """
        curation = await asyncio.to_thread(self._insert, curator_id, data)
        logger.info(f"Curation {curation.id} created by {curator_id} with {curation.artworks_count} artworks")
        return curation

    def _insert(self, curator_id: str, data: CurationCreate) -> Curation:
        with unit_of_work(self.engine) as s:
            if s.get(User, curator_id) is None:
                raise OwnerNotFoundError(curator_id)
            self._check_artwork_set(s, data.artwork_ids)

            curation = Curation(
                title=data.title,
                description=data.description,
                curator_id=curator_id,
                artwork_ids=list(data.artwork_ids),
                artworks_count=len(data.artwork_ids),
                cover_image_url=data.cover_image_url,
                tags=list(data.tags),
                theme=data.theme,
                category=data.category,
                is_public=data.is_public,
                is_featured=data.is_featured,
            )
            s.add(curation)
            s.flush()
            return curation

    async def update_curation(self, curation_id: str, curator_id: str, data: CurationUpdate) -> Curation:
        """Update metadata; a given artwork_ids list replaces the current one wholesale."""
        return await asyncio.to_thread(self._update, curation_id, curator_id, data)

    def _update(self, curation_id, curator_id, data: CurationUpdate) -> Curation:
        changes: dict[str, Any] = {
            k: v for k, v in data.model_dump(exclude_unset=True, exclude={"artwork_ids"}).items()
            if v is not None or k not in _REQUIRED_FIELDS
        }
        with unit_of_work(self.engine) as s:
            curation = self._owned(s, curation_id, curator_id)
            if data.artwork_ids is not None:
                self._check_artwork_set(s, data.artwork_ids)
                self._write_ids(s, curation, list(data.artwork_ids))
            for key, value in changes.items():
                setattr(curation, key, value)
            s.add(curation)
            s.flush()
            s.refresh(curation)
            return curation

    async def delete_curation(self, curation_id: str, curator_id: str) -> None:
        def _delete():
            with unit_of_work(self.engine) as s:
                s.delete(self._owned(s, curation_id, curator_id))

        await asyncio.to_thread(_delete)
        logger.info(f"Curation {curation_id} deleted by {curator_id}")

    # -------------------------------------------------------------------------
    # Ordering
    # -------------------------------------------------------------------------

    async def add_artwork(self, curation_id: str, curator_id: str, artwork_id: str) -> Curation:
        """
        Append a public artwork to the end of the curation.

        Raises:
            NotFoundOrUnauthorizedError: no such curation for this curator
            ArtworkNotFoundError: artwork missing or private
            DuplicateArtworkError: artwork already in the curation
            StaleCurationError: the curation changed concurrently
        """
        return await asyncio.to_thread(self._add, curation_id, curator_id, artwork_id)

    def _add(self, curation_id, curator_id, artwork_id) -> Curation:
        with unit_of_work(self.engine) as s:
            curation = self._owned(s, curation_id, curator_id)
            artwork = s.exec(
                select(Artwork.id).where(Artwork.id == artwork_id, Artwork.is_public == True)  # noqa: E712
            ).first()
            if artwork is None:
                raise ArtworkNotFoundError(artwork_id)
            new_ids = append_artwork(curation.artwork_ids, artwork_id)
            if len(new_ids) > self.max_artworks:
                raise ValidationError(f"A curation can hold at most {self.max_artworks} artworks")
            return self._write_ids(s, curation, new_ids)

    async def remove_artwork(self, curation_id: str, curator_id: str, artwork_id: str) -> Curation:
        """Raises ArtworkNotInCurationError if the id is not in the list."""
        def _remove():
            with unit_of_work(self.engine) as s:
                curation = self._owned(s, curation_id, curator_id)
                return self._write_ids(s, curation, remove_artwork(curation.artwork_ids, artwork_id))

        return await asyncio.to_thread(_remove)

    async def reorder(self, curation_id: str, curator_id: str, new_order: Sequence[str]) -> Curation:
        """
        Replace the order with new_order if it is a permutation of the current list.

        Raises InvalidOrderError otherwise, leaving the curation unmodified.
        """
        def _reorder():
            with unit_of_work(self.engine) as s:
                curation = self._owned(s, curation_id, curator_id)
                return self._write_ids(s, curation, reorder_artworks(curation.artwork_ids, new_order))

        return await asyncio.to_thread(_reorder)

    def _write_ids(self, s: Session, curation: Curation, new_ids: list[str]) -> Curation:
        stmt = (
            update(Curation)
            .where(
                Curation.id == curation.id,
                Curation.curator_id == curation.curator_id,
                Curation.version == curation.version,
            )
            .values(artwork_ids=new_ids, artworks_count=len(new_ids), version=Curation.version + 1)
            .execution_options(synchronize_session=False)
        )
        if s.execute(stmt).rowcount == 0:
            raise StaleCurationError(curation.id)
        s.refresh(curation)
        return curation

    def _check_artwork_set(self, s: Session, artwork_ids: Sequence[str]) -> None:
        if len(artwork_ids) > self.max_artworks:
            raise ValidationError(f"A curation can hold at most {self.max_artworks} artworks")
        resolved = s.exec(
            select(Artwork.id).where(Artwork.id.in_(list(artwork_ids)), Artwork.is_public == True)  # noqa: E712
        ).all()
        # duplicates in the input collapse to one row, so they fail here too
        if len(resolved) != len(artwork_ids):
            raise InvalidArtworkSetError(requested=len(artwork_ids), resolved=len(resolved))

    @staticmethod
    def _owned(s: Session, curation_id: str, curator_id: str) -> Curation:
        curation = s.exec(
            select(Curation).where(Curation.id == curation_id, Curation.curator_id == curator_id)
        ).first()
        if curation is None:
            raise NotFoundOrUnauthorizedError("Curation not found or unauthorized")
        return curation

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    async def get_curation(self, curation_id: str, viewer_id: Optional[str] = None) -> Curation:
        """Fetch one curation and count the view (every read counts)."""
        def _read():
            with unit_of_work(self.engine) as s:
                curation = self._visible(s, curation_id, viewer_id)
                counters.bump(s, Curation, curation_id, views_count=1)
                s.refresh(curation)
                return curation

        return await asyncio.to_thread(_read)

    async def get_curation_artworks(
        self,
        curation_id: str,
        page: int = 1,
        limit: int = 20,
        viewer_id: Optional[str] = None,
    ) -> Page[Artwork]:
        """
        One page of the curation's artworks, in curation order.

        The id list is sliced first and then resolved, so ids whose artwork
        is now private or deleted are dropped and a page can come back short.
        `total` is the length of the id list.
        """
        def _page():
            with get_session(self.engine) as s:
                curation = self._visible(s, curation_id, viewer_id)
                start = page_offset(page, limit)
                window = curation.artwork_ids[start:start + limit]
                rows = s.exec(
                    select(Artwork).where(Artwork.id.in_(window), Artwork.is_public == True)  # noqa: E712
                ).all() if window else []
                by_id = {a.id: a for a in rows}
                items = [by_id[a] for a in window if a in by_id]
                return Page(items=items, total=len(curation.artwork_ids), page=page, limit=limit)

        return await asyncio.to_thread(_page)

    @staticmethod
    def _visible(s: Session, curation_id: str, viewer_id: Optional[str]) -> Curation:
        curation = s.get(Curation, curation_id)
        if curation is None or not (curation.is_public or curation.curator_id == viewer_id):
            raise CurationNotFoundError(curation_id)
        return curation

    async def get_curations(self, query: CurationQuery) -> Page[Curation]:
        stmt = select(Curation).where(Curation.is_public == True)  # noqa: E712
        if query.curator_id:
            stmt = stmt.where(Curation.curator_id == query.curator_id)
        if query.category:
            stmt = stmt.where(Curation.category == query.category)
        if query.theme:
            stmt = stmt.where(Curation.theme == query.theme)

        column = getattr(Curation, query.sort_by)
        order = column.asc() if query.sort_order == "ASC" else column.desc()
        return await asyncio.to_thread(self._paginate, stmt, [order, Curation.id], query.page, query.limit)

    async def get_featured_curations(self, limit: int = 10) -> list[Curation]:
        def _featured():
            with get_session(self.engine) as s:
                stmt = (
                    select(Curation)
                    .where(Curation.is_featured == True, Curation.is_public == True)  # noqa: E712
                    .order_by(Curation.created_at.desc())
                    .limit(limit)
                )
                return list(s.exec(stmt).all())

        return await asyncio.to_thread(_featured)

    async def search_curations(self, query: str, page: int = 1, limit: int = 20) -> Page[Curation]:
        q = (query or "").strip()
        if not q:
            raise ValidationError("Search query is required")

        stmt = select(Curation).where(
            Curation.is_public == True,  # noqa: E712
            or_(
                Curation.title.icontains(q, autoescape=True),
                Curation.description.icontains(q, autoescape=True),
                cast(Curation.tags, String).contains(f'"{q}"', autoescape=True),
            ),
        )
        order = [(Curation.likes_count + Curation.views_count).desc(), Curation.id]
        return await asyncio.to_thread(self._paginate, stmt, order, page, limit)

    def _paginate(self, stmt, order_by, page: int, limit: int) -> Page[Curation]:
        with get_session(self.engine) as s:
            return paginate(s, stmt, order_by, page, limit)
