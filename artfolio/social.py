# =============================================================================
# artfolio/social.py - Users and Follow Graph
# =============================================================================
# A Follow row is the source of truth for "A follows B". The follower's
# following_count and the followee's followers_count are cached copies that
# change in the same transaction as the row.
# =============================================================================

import asyncio
import logging

from sqlalchemy import delete, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from . import counters
from .db import Follow, User, get_session, unit_of_work
from .errors import (
    AlreadyFollowingError,
    NotFollowingError,
    OwnerNotFoundError,
    SelfFollowError,
    TargetNotFoundError,
    UserExistsError,
)
from .schemas import Page, UserCreate
from .utils import paginate

logger = logging.getLogger(__name__)


class SocialService:
    def __init__(self, engine: Engine):
        self.engine = engine

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def create_user(self, data: UserCreate) -> User:
        def _create():
            with unit_of_work(self.engine) as s:
                taken = s.exec(
                    select(User.id).where(or_(User.email == data.email, User.username == data.username))
                ).first()
                if taken:
                    raise UserExistsError("A user with this email or username already exists")
                user = User(**data.model_dump())
                s.add(user)
                try:
                    s.flush()
                except IntegrityError as e:
                    raise UserExistsError("A user with this email or username already exists") from e
                return user

        user = await asyncio.to_thread(_create)
        logger.info(f"User {user.id} ({user.username}) created")
        return user

    async def get_user(self, user_id: str) -> User:
        def _get():
            with get_session(self.engine) as s:
                user = s.get(User, user_id)
                if user is None:
                    raise OwnerNotFoundError(user_id)
                return user

        return await asyncio.to_thread(_get)

    # -------------------------------------------------------------------------
    # Follow graph
    # -------------------------------------------------------------------------

    async def follow(self, follower_id: str, following_id: str) -> Follow:
        """
        Record that follower_id follows following_id.

        Raises:
            SelfFollowError: the two ids are equal
            OwnerNotFoundError: follower_id is not a user
            TargetNotFoundError: following_id is not a user
            AlreadyFollowingError: the pair exists (enforced by the unique constraint)
        """
        if follower_id == following_id:
            raise SelfFollowError()

        def _follow():
            with unit_of_work(self.engine) as s:
                if s.get(User, follower_id) is None:
                    raise OwnerNotFoundError(follower_id)
                if s.get(User, following_id) is None:
                    raise TargetNotFoundError(following_id)
                follow = Follow(follower_id=follower_id, following_id=following_id)
                s.add(follow)
                try:
                    s.flush()
                except IntegrityError as e:
                    raise AlreadyFollowingError(following_id) from e
                counters.bump(s, User, follower_id, following_count=1)
                counters.bump(s, User, following_id, followers_count=1)
                return follow

        follow = await asyncio.to_thread(_follow)
        logger.info(f"{follower_id} now follows {following_id}")
        return follow

    async def unfollow(self, follower_id: str, following_id: str) -> None:
        """Raises NotFollowingError if the pair does not exist."""
        def _unfollow():
            with unit_of_work(self.engine) as s:
                removed = s.execute(
                    delete(Follow).where(Follow.follower_id == follower_id, Follow.following_id == following_id)
                ).rowcount
                if removed == 0:
                    raise NotFollowingError(following_id)
                counters.bump(s, User, follower_id, following_count=-1)
                counters.bump(s, User, following_id, followers_count=-1)

        await asyncio.to_thread(_unfollow)
        logger.info(f"{follower_id} unfollowed {following_id}")

    async def is_following(self, follower_id: str, following_id: str) -> bool:
        def _check():
            with get_session(self.engine) as s:
                return s.exec(
                    select(Follow.id).where(Follow.follower_id == follower_id, Follow.following_id == following_id)
                ).first() is not None

        return await asyncio.to_thread(_check)

    async def get_followers(self, user_id: str, page: int = 1, limit: int = 20) -> Page[User]:
        """Users following user_id, most recent first."""
        stmt = select(User).join(Follow, Follow.follower_id == User.id).where(Follow.following_id == user_id)
        return await asyncio.to_thread(self._paginate, user_id, stmt, page, limit)

    async def get_following(self, user_id: str, page: int = 1, limit: int = 20) -> Page[User]:
        """Users user_id follows, most recent first."""
        stmt = select(User).join(Follow, Follow.following_id == User.id).where(Follow.follower_id == user_id)
        return await asyncio.to_thread(self._paginate, user_id, stmt, page, limit)

    def _paginate(self, user_id, stmt, page, limit) -> Page[User]:
        with get_session(self.engine) as s:
            if s.get(User, user_id) is None:
                raise OwnerNotFoundError(user_id)
            return paginate(s, stmt, [Follow.created_at.desc(), Follow.id.desc()], page, limit)
