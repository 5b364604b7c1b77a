import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import redis
from fastapi import Depends, HTTPException, Request

from chatglue.configs.config import Settings, get_settings
from chatglue.errors import Unauthenticated

logger = logging.getLogger(__name__)


@dataclass
class UserSession:
    user_id: str
    data: Dict[str, Any]


class RedisSessionStore:
    """
    Read-only view of the session records the authentication service keeps
    in Redis, keyed by session id. Values are JSON objects; a plain string
    value is taken to be the user id itself.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisSessionStore":
        logger.info(f"Connecting session store to redis at {settings.REDIS_HOST or 'localhost'}")
        return cls(
            redis.Redis(
                host=settings.REDIS_HOST or "localhost",
                port=settings.REDIS_PORT or 6379,
                username=settings.REDIS_USERNAME,
                password=settings.REDIS_PASSWORD,
                decode_responses=True,
            )
        )

    def lookup(self, session_id: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self.client.get(session_id)
        except redis.RedisError as e:
            logger.error(f"Session lookup failed: {e}")
            raise HTTPException(status_code=500, detail="Session lookup failed") from e
        if raw is None:
            return None
        try:
            record = json.loads(raw)
        except ValueError:
            return {"user_id": raw}
        return record if isinstance(record, dict) else {"user_id": str(record)}


_session_store: Optional[RedisSessionStore] = None


def get_session_store() -> RedisSessionStore:
    global _session_store
    if _session_store is None:
        _session_store = RedisSessionStore.from_settings(get_settings())
    return _session_store


class SessionResolver:
    """Resolves the caller's session from a cookie or bearer token."""

    def __init__(self, store: RedisSessionStore, cookie_name: str = "session_id"):
        self.store = store
        self.cookie_name = cookie_name

    def session_id_from(self, request: Request) -> Optional[str]:
        session_id = request.cookies.get(self.cookie_name)
        if session_id:
            return session_id
        authorization = request.headers.get("authorization", "")
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token:
            return token.strip()
        return None

    def resolve(self, request: Request) -> Optional[UserSession]:
        session_id = self.session_id_from(request)
        if not session_id:
            return None
        data = self.store.lookup(session_id)
        if not data:
            return None
        user_id = data.get("user_id") or data.get("id") or session_id
        return UserSession(user_id=str(user_id), data=data)


def get_session_resolver(
    settings: Settings = Depends(get_settings),
    store: RedisSessionStore = Depends(get_session_store),
) -> SessionResolver:
    return SessionResolver(store, cookie_name=settings.SESSION_COOKIE_NAME)


async def require_session(
    request: Request, resolver: SessionResolver = Depends(get_session_resolver)
) -> UserSession:
    # the redis client is blocking
    session = await asyncio.to_thread(resolver.resolve, request)
    if session is None:
        logger.info("unauthorized request detected")
        raise Unauthenticated()
    return session
