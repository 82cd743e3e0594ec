# user_dal.py - Data access for user accounts and their group memberships
"""
Users are special: they are created from an OSM identity, keyed by their
OSM id for group membership, and only super users may write to them.
Records returned here are cached by user id.
"""
import hmac
import logging
from typing import Optional, List

from sqlalchemy import select, update, delete, insert, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import models
from models import user_groups, GroupType, utcnow
from auth import AuthService
from cache import CacheManager
from errors import IllegalAccessError, NotFoundError
from logging_system import log_audit, log_security
from schemas import (
    User, OSMProfile, Location, RequestToken, Group, UserUpdate,
    OSMProfileUpdate, LocationUpdate,
)

logger = logging.getLogger("maproulette.users")


class UserDAL:
    def __init__(self):
        self.cache_manager: CacheManager[int, User] = CacheManager("users")

    # ============================================================
    # ROW MAPPING
    # ============================================================

    @staticmethod
    def to_record(row: models.User) -> User:
        return User(
            id=row.id,
            created=row.created,
            modified=row.modified,
            theme=row.theme,
            osm_profile=OSMProfile(
                id=row.osm_id,
                display_name=row.name,
                description=row.description or "",
                avatar_url=row.avatar_url or "",
                home_location=Location(latitude=row.home_latitude, longitude=row.home_longitude),
                created=row.osm_created,
                request_token=RequestToken(token=row.oauth_token, secret=row.oauth_secret),
            ),
            groups=[
                Group(id=g.id, name=g.name, project_id=g.project_id, group_type=g.group_type)
                for g in row.groups
            ],
            api_key=row.api_key,
        )

    async def _fetch_one(self, db: AsyncSession, *criteria) -> Optional[User]:
        stmt = (
            select(models.User)
            .options(selectinload(models.User.groups))
            .where(*criteria)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        row = result.scalar_one_or_none()
        return self.to_record(row) if row else None

    def invalidate_osm_id(self, osm_id: int) -> None:
        cached = self.cache_manager.find(lambda u: u.osm_profile.id == osm_id)
        if cached is not None:
            self.cache_manager.remove(cached.id)

    @staticmethod
    def _has_access(user: User) -> None:
        """Access for user functions is limited to super users"""
        if not user.is_super_user:
            log_security("user_write_denied", user_id=str(user.id))
            raise IllegalAccessError("Only super users have access to user objects.")

    # ============================================================
    # READS
    # ============================================================

    async def retrieve_by_id(self, id: int, db: AsyncSession) -> Optional[User]:
        return await self.cache_manager.with_option_caching(
            id, lambda: self._fetch_one(db, models.User.id == id)
        )

    async def retrieve_by_osm_id(self, osm_id: int, db: AsyncSession) -> Optional[User]:
        cached = self.cache_manager.find(lambda u: u.osm_profile.id == osm_id)
        if cached is not None:
            return cached
        user = await self._fetch_one(db, models.User.osm_id == osm_id)
        if user is not None:
            self.cache_manager.add(user.id, user)
        return user

    async def retrieve_by_api_key(self, api_key: str, id: int, db: AsyncSession) -> Optional[User]:
        """The user with this id whose stored key digest matches the given raw key"""
        digest = AuthService.hash_api_key(api_key)
        user = await self.cache_manager.with_option_caching(
            id, lambda: self._fetch_one(db, models.User.id == id, models.User.api_key == digest)
        )
        # a cached entry may have been loaded through another lookup
        if user is None or not user.api_key or not hmac.compare_digest(user.api_key, digest):
            return None
        return user

    async def match_by_request_token_and_id(
        self, request_token: RequestToken, id: int, db: AsyncSession
    ) -> Optional[User]:
        user = await self.cache_manager.with_option_caching(
            id,
            lambda: self._fetch_one(
                db,
                models.User.id == id,
                models.User.oauth_token == request_token.token,
                models.User.oauth_secret == request_token.secret,
            ),
        )
        # double check that the token and secret still match, in case it came from the cache
        if user is None or user.osm_profile.request_token != request_token:
            return None
        return user

    async def match_by_request_token(self, request_token: RequestToken, db: AsyncSession) -> Optional[User]:
        return await self._fetch_one(
            db,
            models.User.oauth_token == request_token.token,
            models.User.oauth_secret == request_token.secret,
        )

    async def list_group_ids(self, osm_id: int, db: AsyncSession) -> List[int]:
        result = await db.execute(
            select(user_groups.c.group_id).where(user_groups.c.osm_user_id == osm_id)
        )
        return list(result.scalars().all())

    # ============================================================
    # WRITES
    # ============================================================

    async def insert(self, item: User, user: User, db: AsyncSession) -> User:
        """Upsert: update the row matching item.id or its OSM id, otherwise insert.

        Group memberships of the OSM id are replaced by ``item.groups``.
        """
        self._has_access(user)
        profile = item.osm_profile
        values = {
            "osm_id": profile.id,
            "osm_created": profile.created or utcnow(),
            "name": profile.display_name,
            "description": profile.description,
            "avatar_url": profile.avatar_url,
            "oauth_token": profile.request_token.token,
            "oauth_secret": profile.request_token.secret,
            "theme": item.theme,
            "home_latitude": profile.home_location.latitude,
            "home_longitude": profile.home_location.longitude,
        }

        previous_id = None
        try:
            result = await db.execute(
                select(models.User).where(
                    or_(models.User.id == item.id, models.User.osm_id == profile.id)
                )
            )
            row = result.scalars().first()

            stale_osm_ids = {profile.id}
            if row is not None:
                previous_id = row.id
                stale_osm_ids.add(row.osm_id)
            # memberships are rebuilt from the item
            await db.execute(
                delete(user_groups).where(user_groups.c.osm_user_id.in_(stale_osm_ids))
            )

            if row is None:
                row = models.User(**values)
                db.add(row)
            else:
                for key, value in values.items():
                    setattr(row, key, value)
            await db.flush()

            group_ids = sorted({g.id for g in item.groups})
            if group_ids:
                await db.execute(
                    insert(user_groups),
                    [{"osm_user_id": profile.id, "group_id": gid} for gid in group_ids],
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if previous_id is not None:
            self.cache_manager.remove(previous_id)
        saved = await self._fetch_one(db, models.User.osm_id == profile.id)
        self.cache_manager.add(saved.id, saved)
        log_audit(
            "upsert", "user", user_id=str(user.id),
            metadata={"target_id": saved.id, "osm_id": profile.id, "created": previous_id is None},
        )
        return saved

    async def update(self, value: UserUpdate, user: User, id: int, db: AsyncSession) -> Optional[User]:
        """Apply a partial update; fields missing from ``value`` keep their current value"""
        self._has_access(user)

        async def updater(cached: User) -> Optional[User]:
            if not cached.has_write_access(user):
                raise IllegalAccessError(f"User {user.id} cannot write to user {cached.id}")
            profile = value.osm_profile or OSMProfileUpdate()
            location = profile.home_location or LocationUpdate()
            current = cached.osm_profile

            def pick(new, old):
                return old if new is None else new

            values = {
                "api_key": AuthService.hash_api_key(value.api_key) if value.api_key else cached.api_key,
                "name": pick(profile.display_name, current.display_name),
                "description": pick(profile.description, current.description),
                "avatar_url": pick(profile.avatar_url, current.avatar_url),
                "oauth_token": pick(profile.token, current.request_token.token),
                "oauth_secret": pick(profile.secret, current.request_token.secret),
                "theme": pick(value.theme, cached.theme),
                "home_latitude": pick(location.latitude, current.home_location.latitude),
                "home_longitude": pick(location.longitude, current.home_location.longitude),
            }

            try:
                if value.groups is not None:
                    await self._apply_group_changes(current.id, value.groups.add, value.groups.delete, db)
                result = await db.execute(
                    update(models.User).where(models.User.id == id).values(**values)
                )
                if result.rowcount == 0:
                    await db.rollback()
                    return None
                await db.commit()
            except Exception:
                await db.rollback()
                raise

            log_audit("update", "user", user_id=str(user.id), metadata={"target_id": id})
            return await self._fetch_one(db, models.User.id == id)

        return await self.cache_manager.with_updating_cache(
            id, lambda key: self._fetch_one(db, models.User.id == key), updater
        )

    async def _apply_group_changes(
        self, osm_id: int, add: List[int], remove: List[int], db: AsyncSession
    ) -> None:
        if remove:
            await db.execute(
                delete(user_groups).where(
                    user_groups.c.osm_user_id == osm_id,
                    user_groups.c.group_id.in_(remove),
                )
            )
        if add:
            existing = set(await self.list_group_ids(osm_id, db))
            new_ids = sorted(set(add) - existing)
            if new_ids:
                await db.execute(
                    insert(user_groups),
                    [{"osm_user_id": osm_id, "group_id": gid} for gid in new_ids],
                )

    async def _delete_where(self, criteria, db: AsyncSession) -> tuple:
        """Delete the matching user and its memberships. Returns (rows deleted, user id)"""
        try:
            result = await db.execute(select(models.User.id, models.User.osm_id).where(criteria))
            found = result.first()
            if found is None:
                return 0, None
            user_id, osm_id = found
            await db.execute(delete(user_groups).where(user_groups.c.osm_user_id == osm_id))
            deleted = await db.execute(delete(models.User).where(models.User.id == user_id))
            await db.commit()
            return deleted.rowcount, user_id
        except Exception:
            await db.rollback()
            raise

    async def delete(self, id: int, user: User, db: AsyncSession) -> int:
        self._has_access(user)

        async def deleter():
            count, _ = await self._delete_where(models.User.id == id, db)
            return count

        count = await self.cache_manager.with_cache_id_deletion([id], deleter)
        log_audit("delete", "user", user_id=str(user.id), metadata={"target_id": id, "deleted": count})
        return count

    async def delete_by_osm_id(self, osm_id: int, user: User, db: AsyncSession) -> int:
        self._has_access(user)
        result = await db.execute(select(models.User.id).where(models.User.osm_id == osm_id))
        ids = list(result.scalars().all())

        async def deleter():
            count, _ = await self._delete_where(models.User.osm_id == osm_id, db)
            return count

        count = await self.cache_manager.with_cache_id_deletion(ids, deleter)
        log_audit("delete", "user", user_id=str(user.id), metadata={"osm_id": osm_id, "deleted": count})
        return count

    # ============================================================
    # GROUP MEMBERSHIP
    # ============================================================

    async def _require_osm_user(self, osm_id: int, db: AsyncSession) -> User:
        target = await self.retrieve_by_osm_id(osm_id, db)
        if target is None:
            raise NotFoundError("User", osm_id)
        return target

    async def add_user_to_project(self, osm_id: int, project_id: int, user: User, db: AsyncSession) -> None:
        """Make the user an administrator of the project"""
        self._has_access(user)
        await self._require_osm_user(osm_id, db)
        result = await db.execute(
            select(models.Group.id).where(
                models.Group.group_type == GroupType.ADMIN,
                models.Group.project_id == project_id,
            )
        )
        group_ids = list(result.scalars().all())
        if not group_ids:
            raise NotFoundError("Project", project_id)
        try:
            await self._apply_group_changes(osm_id, group_ids, [], db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        self.invalidate_osm_id(osm_id)
        log_audit("add_to_project", "user", user_id=str(user.id), metadata={"osm_id": osm_id, "project_id": project_id})

    async def add_user_to_group(self, osm_id: int, group_id: int, user: User, db: AsyncSession) -> None:
        self._has_access(user)
        await self._require_osm_user(osm_id, db)
        if await db.get(models.Group, group_id) is None:
            raise NotFoundError("Group", group_id)
        try:
            await self._apply_group_changes(osm_id, [group_id], [], db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        self.invalidate_osm_id(osm_id)
        log_audit("add_to_group", "user", user_id=str(user.id), metadata={"osm_id": osm_id, "group_id": group_id})

    # ============================================================
    # API KEYS
    # ============================================================

    async def generate_api_key(self, id: int, user: User, db: AsyncSession) -> Optional[str]:
        """Replace the user's API key; the raw key is only ever returned here"""
        target = await self.retrieve_by_id(id, db)
        if target is None:
            return None
        if not target.has_write_access(user):
            log_security("api_key_denied", user_id=str(user.id), metadata={"target_id": id})
            raise IllegalAccessError(f"User {user.id} cannot generate an API key for user {id}")

        raw_key, key_hash, key_prefix = AuthService.generate_api_key()
        try:
            await db.execute(update(models.User).where(models.User.id == id).values(api_key=key_hash))
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        self.cache_manager.remove(id)
        log_audit("generate_api_key", "user", user_id=str(user.id), metadata={"target_id": id, "prefix": key_prefix})
        return f"{id}|{raw_key}"


user_dal = UserDAL()
