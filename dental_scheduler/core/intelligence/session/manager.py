"""Redis-based persistence of conversation contexts."""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from redis.exceptions import RedisError

from dental_scheduler.config import settings
from dental_scheduler.infra.redis import get_redis, redis_key
from .models import ChatUser, ConversationContext, TenantInfo


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Redis-based session manager for conversation contexts.

    Key pattern: dental:v1:chat:session:{tenant_id}:{session_id}

    Gracefully handles Redis unavailability with in-memory fallback.
    """

    def __init__(self, ttl: Optional[int] = None):
        """Initialize session manager."""
        self._ttl = ttl or settings.redis_session_ttl  # 30 minutes default
        self._in_memory_fallback: dict[str, ConversationContext] = {}

    def _key(self, tenant_id: str, session_id: str) -> str:
        """Generate Redis key."""
        return redis_key("chat", "session", tenant_id, session_id)

    async def create(
        self,
        tenant: TenantInfo,
        user: ChatUser,
        session_id: Optional[str] = None,
    ) -> ConversationContext:
        """
        Create a new session.

        Args:
            tenant: Cabinet the conversation is with
            user: Acting user
            session_id: Session ID (auto-generated if not provided)

        Returns:
            Created ConversationContext
        """
        context = ConversationContext(
            session_id=session_id or str(uuid4()),
            user=user,
            tenant=tenant,
        )
        await self.save(context)
        logger.debug(f"Session created: {context.session_id}")
        return context

    async def get(
        self,
        tenant_id: str,
        session_id: str,
    ) -> Optional[ConversationContext]:
        """
        Get session by ID.

        Args:
            tenant_id: Cabinet identifier
            session_id: Session identifier

        Returns:
            ConversationContext or None if not found
        """
        key = self._key(tenant_id, session_id)
        redis = await get_redis()

        if redis:
            try:
                data = await redis.get(key)
            except RedisError as e:
                logger.error(f"Failed to get session {session_id}: {e}")
                return self._in_memory_fallback.get(key)

            if data:
                return ConversationContext.from_json(data)
            return None
        else:
            # Fallback to in-memory
            return self._in_memory_fallback.get(key)

    async def get_or_create(
        self,
        tenant: TenantInfo,
        user: ChatUser,
        session_id: Optional[str] = None,
    ) -> ConversationContext:
        """
        Get existing session or create new one.

        A session id that belongs to another user is not reused.
        """
        if session_id:
            context = await self.get(tenant.id, session_id)
            if context and context.user.user_id == user.user_id:
                return context
            if context:
                logger.warning(f"Session {session_id} requested by another user, starting a new one")
                session_id = None

        return await self.create(tenant, user, session_id=session_id)

    async def save(self, context: ConversationContext) -> bool:
        """
        Save session and refresh its TTL.

        Args:
            context: ConversationContext to save

        Returns:
            True if saved to Redis, False if kept in memory only
        """
        context.updated_at = _utcnow()
        key = self._key(context.tenant.id, context.session_id)
        redis = await get_redis()

        if redis:
            try:
                await redis.setex(key, self._ttl, context.to_json())
                logger.debug(f"Session saved: {context.session_id}")
                return True
            except RedisError as e:
                logger.error(f"Failed to save session {context.session_id}: {e}")

        # Fallback to in-memory
        self._in_memory_fallback[key] = context
        logger.warning(
            f"Redis unavailable, using in-memory fallback for session {context.session_id}"
        )
        return False

    async def delete(
        self,
        tenant_id: str,
        session_id: str,
    ) -> bool:
        """
        Delete a session.

        Returns:
            True if deleted
        """
        key = self._key(tenant_id, session_id)
        removed = self._in_memory_fallback.pop(key, None) is not None
        redis = await get_redis()

        if redis:
            try:
                deleted = await redis.delete(key)
            except RedisError as e:
                logger.error(f"Failed to delete session {session_id}: {e}")
                return removed

            if deleted:
                logger.debug(f"Session deleted: {session_id}")
            return bool(deleted) or removed

        return removed
