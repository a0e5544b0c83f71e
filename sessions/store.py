"""
sessions/store.py -- Redis-backed session store for live refresh tokens.

One key per user holds the currently valid refresh token:

    refresh_token:{user_id}  ->  <signed refresh token>   (TTL = refresh lifetime)

Writing the key on login overwrites any previous value, which is what makes
"at most one valid refresh token per user" hold without any locking: the last
writer wins. Expiry is Redis' own TTL, not application logic.

Degraded mode (fail open): every redis-py error is logged and converted to
absent / no-op / False. The adapter never raises into request handling.
That does NOT mean an unreachable store grants access -- the orchestrator
treats "no entry" as "refresh denied", so the protocol still fails closed.

Timeouts: the client is built with bounded connect and socket timeouts and no
retry loop. A timeout is just another RedisError.

Usage:
    sessions = SessionStore.from_url("redis://localhost:6379/0")
    sessions.save_refresh_token(user_id, token, ttl_seconds=604800)
    token = sessions.get_refresh_token(user_id)   # str or None
    sessions.revoke_refresh_token(user_id)
    sessions.close()

Layer rule: no imports from api/, auth/, or core/.
"""

from __future__ import annotations

import logging

import redis
from redis.backoff import NoBackoff
from redis.exceptions import RedisError
from redis.retry import Retry

logger = logging.getLogger("authservice.sessions")

REFRESH_KEY_PREFIX = "refresh_token"


def refresh_key(user_id: str) -> str:
    return f"{REFRESH_KEY_PREFIX}:{user_id}"


class SessionStore:
    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, *, connect_timeout: float = 10.0, socket_timeout: float = 5.0) -> SessionStore:
        """Build a store over a lazily connecting client.

        redis-py connects on first command, so construction never fails even
        when Redis is down; the first call logs and degrades instead.
        """
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=connect_timeout,
            socket_timeout=socket_timeout,
            retry=Retry(NoBackoff(), 0),
        )
        return cls(client)

    # ------------------------------------------------------------------
    # Generic key-value operations
    # ------------------------------------------------------------------

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        """SET key value EX ttl. Overwrites unconditionally."""
        try:
            self._client.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            logger.warning("Session store write failed for %s: %s", key, exc)

    def get(self, key: str) -> str | None:
        """Return the value, or None if absent, expired, or the store is unreachable."""
        try:
            return self._client.get(key)
        except RedisError as exc:
            logger.warning("Session store read failed for %s: %s", key, exc)
            return None

    def delete(self, key: str) -> None:
        """Delete key. Deleting an absent key is a no-op."""
        try:
            self._client.delete(key)
        except RedisError as exc:
            logger.warning("Session store delete failed for %s: %s", key, exc)

    def exists(self, key: str) -> bool:
        try:
            return bool(self._client.exists(key))
        except RedisError as exc:
            logger.warning("Session store exists check failed for %s: %s", key, exc)
            return False

    def ping(self) -> bool:
        """Used by the health endpoint."""
        try:
            return bool(self._client.ping())
        except RedisError:
            return False

    # ------------------------------------------------------------------
    # Refresh-token session entries
    # ------------------------------------------------------------------

    def save_refresh_token(self, user_id: str, token: str, ttl_seconds: int) -> None:
        self.put(refresh_key(user_id), token, ttl_seconds)

    def get_refresh_token(self, user_id: str) -> str | None:
        return self.get(refresh_key(user_id))

    def revoke_refresh_token(self, user_id: str) -> None:
        self.delete(refresh_key(user_id))

    def close(self) -> None:
        try:
            self._client.close()
        except RedisError as exc:
            logger.warning("Session store close failed: %s", exc)
