import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError as SchemaValidationError

from .artworks import ArtworkService
from .config import get_settings
from .curations import CurationService
from .db import init_db, make_engine
from .errors import ArtfolioError, AuthenticationError, OwnerNotFoundError, PermissionDeniedError
from .images import ImagePipeline
from .schemas import (
    AddArtworkRequest,
    ArtworkCreate,
    ArtworkQuery,
    ArtworkUpdate,
    CurationCreate,
    CurationQuery,
    CurationUpdate,
    ReorderRequest,
    UserCreate,
)
from .social import SocialService
from .storage import LocalObjectStore
from .utils import artwork_to_dict, curation_to_dict, page_to_dict, user_to_dict

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("artfolio")

# -----------------------------------------------------------------------------
# App, services & media
# -----------------------------------------------------------------------------
app = FastAPI(title="Artfolio", debug=settings.DEBUG)

engine = make_engine(settings.DATABASE_URL, echo=settings.DEBUG)
store = LocalObjectStore(settings.upload_root)
pipeline = ImagePipeline.from_settings(settings, store)
artworks = ArtworkService(engine, pipeline, default_currency=settings.DEFAULT_CURRENCY)
curations = CurationService(engine, max_artworks=settings.CURATION_MAX_ARTWORKS)
social = SocialService(engine)

app.mount(settings.MEDIA_URL, StaticFiles(directory=store.root), name="media")

@app.on_event("startup")
def on_startup():
    init_db(engine)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)")
    return response

# -----------------------------------------------------------------------------
# Error mapping
# -----------------------------------------------------------------------------
@app.exception_handler(ArtfolioError)
async def artfolio_error_handler(request: Request, exc: ArtfolioError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        if settings.is_production:
            return JSONResponse({"detail": "Internal server error", "code": exc.code}, status_code=exc.status_code)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)

@app.exception_handler(RequestValidationError)
@app.exception_handler(SchemaValidationError)
async def validation_error_handler(request: Request, exc: Exception):
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    return JSONResponse(
        {"detail": "Validation error", "code": "VALIDATION_ERROR", "errors": errors},
        status_code=422,
    )

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    detail = str(exc) if settings.DEBUG and not settings.is_production else "Internal server error"
    return JSONResponse({"detail": detail, "code": "INTERNAL_ERROR"}, status_code=500)

# -----------------------------------------------------------------------------
# Identity
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Actor:
    id: str
    is_artist: bool

def _check_api_key(request: Request) -> bool:
    if not settings.API_KEY:
        return True  # open if not configured
    return request.headers.get("X-API-Key", "") == settings.API_KEY

async def optional_actor(request: Request) -> Optional[Actor]:
    if not _check_api_key(request):
        raise AuthenticationError("Invalid API key")
    actor_id = request.headers.get("X-Actor-Id", "").strip()
    if not actor_id:
        return None
    try:
        user = await social.get_user(actor_id)
    except OwnerNotFoundError:
        raise AuthenticationError("Unknown actor")
    return Actor(id=user.id, is_artist=user.is_artist)

async def current_actor(actor: Optional[Actor] = Depends(optional_actor)) -> Actor:
    if actor is None:
        raise AuthenticationError("Authentication required")
    return actor

def _viewer(actor: Optional[Actor]) -> Optional[str]:
    return actor.id if actor else None

def _artwork_json(artwork, is_liked=None):
    return artwork_to_dict(artwork, settings.MEDIA_URL, is_liked)

@dataclass(frozen=True)
class Paging:
    page: int
    limit: int

def paging(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
) -> Paging:
    return Paging(page=page, limit=limit)

# -----------------------------------------------------------------------------
# Users & follows
# -----------------------------------------------------------------------------
@app.post("/api/users", status_code=201)
async def api_create_user(payload: UserCreate, request: Request):
    if not _check_api_key(request):
        raise AuthenticationError("Invalid API key")
    user = await social.create_user(payload)
    return user_to_dict(user)

@app.get("/api/users/{user_id}")
async def api_get_user(user_id: str, actor: Optional[Actor] = Depends(optional_actor)):
    user = await social.get_user(user_id)
    data = user_to_dict(user)
    if actor and actor.id != user_id:
        data["is_following"] = await social.is_following(actor.id, user_id)
    return data

@app.post("/api/users/{user_id}/follow")
async def api_follow(user_id: str, actor: Actor = Depends(current_actor)):
    await social.follow(actor.id, user_id)
    return {"ok": True, "is_following": True}

@app.delete("/api/users/{user_id}/follow")
async def api_unfollow(user_id: str, actor: Actor = Depends(current_actor)):
    await social.unfollow(actor.id, user_id)
    return {"ok": True, "is_following": False}

@app.get("/api/users/{user_id}/followers")
async def api_followers(user_id: str, p: Paging = Depends(paging)):
    result = await social.get_followers(user_id, p.page, p.limit)
    return page_to_dict(result, user_to_dict, key="followers")

@app.get("/api/users/{user_id}/following")
async def api_following(user_id: str, p: Paging = Depends(paging)):
    result = await social.get_following(user_id, p.page, p.limit)
    return page_to_dict(result, user_to_dict, key="following")

# -----------------------------------------------------------------------------
# Artworks
# -----------------------------------------------------------------------------
@app.get("/api/artworks")
async def api_list_artworks(
    p: Paging = Depends(paging),
    artist_id: Optional[str] = None,
    tags: Optional[List[str]] = Query(None),
    category: Optional[str] = None,
    is_for_sale: Optional[bool] = None,
    sort_by: str = "created_at",
    sort_order: str = "DESC",
    actor: Optional[Actor] = Depends(optional_actor),
):
    query = ArtworkQuery(
        page=p.page, limit=p.limit, artist_id=artist_id, tags=tags, category=category,
        is_for_sale=is_for_sale, sort_by=sort_by, sort_order=sort_order.upper(),
    )
    result = await artworks.get_artworks(query)
    return page_to_dict(result, _artwork_json, key="artworks")

@app.get("/api/artworks/featured")
async def api_featured_artworks(limit: int = Query(10, ge=1, le=50)):
    items = await artworks.get_featured_artworks(limit)
    return {"artworks": [_artwork_json(a) for a in items]}

@app.get("/api/artworks/search")
async def api_search_artworks(q: str = "", p: Paging = Depends(paging)):
    result = await artworks.search_artworks(q, p.page, p.limit)
    return page_to_dict(result, _artwork_json, key="artworks")

@app.get("/api/artworks/{artwork_id}")
async def api_get_artwork(artwork_id: str, actor: Optional[Actor] = Depends(optional_actor)):
    artwork, is_liked = await artworks.get_artwork(artwork_id, _viewer(actor))
    return _artwork_json(artwork, is_liked)

@app.post("/api/artworks", status_code=201)
async def api_create_artwork(payload: ArtworkCreate, actor: Actor = Depends(current_actor)):
    if not actor.is_artist:
        raise PermissionDeniedError("Only artists can create artworks")
    artwork = await artworks.create_artwork(actor.id, payload)
    return _artwork_json(artwork)

@app.put("/api/artworks/{artwork_id}")
async def api_update_artwork(artwork_id: str, payload: ArtworkUpdate, actor: Actor = Depends(current_actor)):
    artwork = await artworks.update_artwork(artwork_id, actor.id, payload)
    return _artwork_json(artwork)

@app.delete("/api/artworks/{artwork_id}")
async def api_delete_artwork(artwork_id: str, actor: Actor = Depends(current_actor)):
    await artworks.delete_artwork(artwork_id, actor.id)
    return {"ok": True}

@app.post("/api/artworks/{artwork_id}/like")
async def api_toggle_like(artwork_id: str, actor: Actor = Depends(current_actor)):
    result = await artworks.toggle_like(artwork_id, actor.id)
    return {"is_liked": result.is_liked, "likes_count": result.likes_count}

# -----------------------------------------------------------------------------
# Curations
# -----------------------------------------------------------------------------
@app.get("/api/curations")
async def api_list_curations(
    p: Paging = Depends(paging),
    curator_id: Optional[str] = None,
    category: Optional[str] = None,
    theme: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "DESC",
):
    query = CurationQuery(
        page=p.page, limit=p.limit, curator_id=curator_id, category=category, theme=theme,
        sort_by=sort_by, sort_order=sort_order.upper(),
    )
    result = await curations.get_curations(query)
    return page_to_dict(result, curation_to_dict, key="curations")

@app.get("/api/curations/featured")
async def api_featured_curations(limit: int = Query(10, ge=1, le=50)):
    items = await curations.get_featured_curations(limit)
    return {"curations": [curation_to_dict(c) for c in items]}

@app.get("/api/curations/search")
async def api_search_curations(q: str = "", p: Paging = Depends(paging)):
    result = await curations.search_curations(q, p.page, p.limit)
    return page_to_dict(result, curation_to_dict, key="curations")

@app.post("/api/curations", status_code=201)
async def api_create_curation(payload: CurationCreate, actor: Actor = Depends(current_actor)):
    curation = await curations.create_curation(actor.id, payload)
    return curation_to_dict(curation)

@app.get("/api/curations/{curation_id}")
async def api_get_curation(curation_id: str, actor: Optional[Actor] = Depends(optional_actor)):
    curation = await curations.get_curation(curation_id, _viewer(actor))
    return curation_to_dict(curation)

@app.put("/api/curations/{curation_id}")
async def api_update_curation(curation_id: str, payload: CurationUpdate, actor: Actor = Depends(current_actor)):
    curation = await curations.update_curation(curation_id, actor.id, payload)
    return curation_to_dict(curation)

@app.delete("/api/curations/{curation_id}")
async def api_delete_curation(curation_id: str, actor: Actor = Depends(current_actor)):
    await curations.delete_curation(curation_id, actor.id)
    return {"ok": True}

@app.post("/api/curations/{curation_id}/artworks")
async def api_add_curation_artwork(curation_id: str, payload: AddArtworkRequest, actor: Actor = Depends(current_actor)):
    curation = await curations.add_artwork(curation_id, actor.id, payload.artwork_id)
    return curation_to_dict(curation)

@app.delete("/api/curations/{curation_id}/artworks/{artwork_id}")
async def api_remove_curation_artwork(curation_id: str, artwork_id: str, actor: Actor = Depends(current_actor)):
    curation = await curations.remove_artwork(curation_id, actor.id, artwork_id)
    return curation_to_dict(curation)

@app.put("/api/curations/{curation_id}/reorder")
async def api_reorder_curation(curation_id: str, payload: ReorderRequest, actor: Actor = Depends(current_actor)):
    curation = await curations.reorder(curation_id, actor.id, payload.artwork_ids)
    return curation_to_dict(curation)

@app.get("/api/curations/{curation_id}/artworks")
async def api_curation_artworks(
    curation_id: str,
    p: Paging = Depends(paging),
    actor: Optional[Actor] = Depends(optional_actor),
):
    result = await curations.get_curation_artworks(curation_id, p.page, p.limit, _viewer(actor))
    return page_to_dict(result, _artwork_json, key="artworks")
