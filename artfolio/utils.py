from typing import Any, Callable, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from .db import Artwork, Curation, User
from .schemas import Page


def page_offset(page: int, limit: int) -> int:
    return (max(page, 1) - 1) * limit


def paginate(session: Session, stmt, order_by, page: int, limit: int) -> Page:
    total = session.exec(select(func.count()).select_from(stmt.subquery())).one()
    rows = session.exec(stmt.order_by(*order_by).offset(page_offset(page, limit)).limit(limit)).all()
    return Page(items=list(rows), total=total, page=page, limit=limit)


def media_url_for(key: Optional[str], media_url: str = "/media") -> Optional[str]:
    if not key:
        return None
    return f"{media_url.rstrip('/')}/{key}"


# -----------------------------------------------------------------------------
# Read-only projections
# -----------------------------------------------------------------------------
def artwork_stats(artwork: Artwork) -> dict[str, int]:
    return {
        "likes": artwork.likes_count,
        "comments": artwork.comments_count,
        "views": artwork.views_count,
    }


def artwork_image_urls(artwork: Artwork, media_url: str = "/media") -> dict[str, Optional[str]]:
    original = media_url_for(artwork.image_url, media_url)
    return {
        "original": original,
        "medium": media_url_for(artwork.medium_url, media_url) or original,
        "thumbnail": media_url_for(artwork.thumbnail_url, media_url) or original,
    }


def artwork_dimensions(artwork: Artwork) -> Optional[dict[str, Any]]:
    if artwork.width and artwork.height:
        return {
            "width": artwork.width,
            "height": artwork.height,
            "aspect_ratio": artwork.width / artwork.height,
        }
    return None


def curation_stats(curation: Curation) -> dict[str, int]:
    return {
        "views": curation.views_count,
        "likes": curation.likes_count,
        "artworks": curation.artworks_count,
    }


def user_stats(user: User) -> dict[str, int]:
    return {
        "followers": user.followers_count,
        "following": user.following_count,
        "artworks": user.artworks_count,
        "likes": user.likes_received_count,
    }


# -----------------------------------------------------------------------------
# JSON shapes for the API
# -----------------------------------------------------------------------------
def user_to_dict(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "username": user.username,
        "is_artist": user.is_artist,
        "bio": user.bio,
        "avatar_url": user.avatar_url,
        "stats": user_stats(user),
        "created_at": user.created_at.isoformat(),
    }


def artwork_to_dict(artwork: Artwork, media_url: str = "/media", is_liked: Optional[bool] = None) -> dict[str, Any]:
    data = {
        "id": artwork.id,
        "title": artwork.title,
        "description": artwork.description,
        "artist_id": artwork.artist_id,
        "images": artwork_image_urls(artwork, media_url),
        "tags": list(artwork.tags or []),
        "category": artwork.category,
        "medium": artwork.medium,
        "dimensions": artwork_dimensions(artwork),
        "stats": artwork_stats(artwork),
        "is_public": artwork.is_public,
        "is_featured": artwork.is_featured,
        "is_for_sale": artwork.is_for_sale,
        "price": str(artwork.price) if artwork.price is not None else None,
        "currency": artwork.currency,
        "created_at": artwork.created_at.isoformat(),
    }
    if is_liked is not None:
        data["is_liked"] = is_liked
    return data


def curation_to_dict(curation: Curation) -> dict[str, Any]:
    return {
        "id": curation.id,
        "title": curation.title,
        "description": curation.description,
        "curator_id": curation.curator_id,
        "artwork_ids": list(curation.artwork_ids),
        "artworks_count": curation.artworks_count,
        "cover_image_url": curation.cover_image_url,
        "tags": list(curation.tags or []),
        "theme": curation.theme,
        "category": curation.category,
        "stats": curation_stats(curation),
        "is_public": curation.is_public,
        "is_featured": curation.is_featured,
        "version": curation.version,
        "created_at": curation.created_at.isoformat(),
    }


def page_to_dict(page: Page, serialize: Callable[[Any], dict[str, Any]], key: str = "items") -> dict[str, Any]:
    return {
        key: [serialize(item) for item in page.items],
        "total": page.total,
        "page": page.page,
        "limit": page.limit,
    }
