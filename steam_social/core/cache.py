"""In-process read-model cache.

Values are stored with an expiry timestamp and dropped lazily on read. Callers
cache detached values only (pydantic models, id lists), never ORM instances,
since those are bound to the request's session.
"""

import threading
import time
from typing import Any

from steam_social.core.logger import get_logger
from steam_social.core.settings import settings

logger = get_logger(__name__)

class TTLCache:
    def __init__(self, default_ttl: int):
        self.default_ttl = default_ttl
        self._data: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return default
            expires_at, value = item
            if time.monotonic() >= expires_at:
                del self._data[key]
                return default
            return value

    def put(self, key: str, value: Any, ttl: int | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._data[key] = (time.monotonic() + ttl, value)

    def evict(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)
        logger.debug("cache evict %s", keys)

    def evict_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for k in doomed:
                del self._data[k]
        logger.debug("cache evict prefix %r (%d keys)", prefix, len(doomed))
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


cache = TTLCache(default_ttl=settings.CACHE_TTL_SECONDS)


# Key builders. Keep every key format in one place so eviction matches lookup.
def user_key(user_id: int) -> str:
    return f"user:{user_id}"


def user_steam_key(steam_id: int) -> str:
    return f"user:steam:{steam_id}"


def game_key(game_id: int) -> str:
    return f"game:{game_id}"


def game_steam_key(steam_app_id: int) -> str:
    return f"game:steam:{steam_app_id}"


POPULAR_GAMES_KEY = "games:popular"


def friends_key(user_id: int) -> str:
    return f"friends:{user_id}"


def stats_key(user_id: int) -> str:
    return f"stats:{user_id}"


def recommendations_key(user_id: int) -> str:
    return f"recommendations:{user_id}"


def dashboard_key(user_id: int) -> str:
    return f"dashboard:{user_id}"


def common_games_key(user_id: int, friend_id: int) -> str:
    return f"common:{user_id}:{friend_id}"


def evict_user_analytics(*user_ids: int) -> None:
    """Drop every derived read-model (stats, recommendations, dashboard) for the users."""
    keys: list[str] = []
    for uid in user_ids:
        keys.extend([stats_key(uid), recommendations_key(uid), dashboard_key(uid)])
    cache.evict(*keys)
