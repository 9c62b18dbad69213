import os
import time
import logging
from typing import Any, Dict, Optional, Tuple

from pydantic import PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore")

    database_url: str = os.getenv("DATABASE_URL", "postgresql+psycopg2://friends:friends@db:5432/friends")
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # ElasticSearch connection
    es_host: str = os.getenv("ES_HOST", "http://localhost")
    es_port: int = int(os.getenv("ES_PORT", "9200"))
    es_index: str = os.getenv("ES_INDEX", "friends")
    es_request_timeout: int = int(os.getenv("ES_REQUEST_TIMEOUT", "10"))
    es_max_retries: int = int(os.getenv("ES_MAX_RETRIES", "2"))
    # Upper bound used when a caller asks for an unbounded result (limit <= 0)
    es_max_result_window: int = int(os.getenv("ES_MAX_RESULT_WINDOW", "10000"))

    # Population
    populate_batch_size: int = int(os.getenv("POPULATE_BATCH_SIZE", "50"))
    populate_page_timeout: int = int(os.getenv("POPULATE_PAGE_TIMEOUT", "60"))

    # Recommendations
    default_max_recommendations: int = int(os.getenv("DEFAULT_MAX_RECOMMENDATIONS", "5"))
    # Per-item settings written to Redis by the settings UI
    redis_settings_enabled: bool = os.getenv("REDIS_SETTINGS_ENABLED", "true").lower() == "true"
    # Seconds a Redis value is reused, and seconds Redis is skipped after a failed lookup
    item_setting_cache_seconds: int = int(os.getenv("ITEM_SETTING_CACHE_SECONDS", "30"))
    redis_retry_seconds: int = int(os.getenv("REDIS_RETRY_SECONDS", "30"))

    _item_cache: Dict[str, Tuple[float, Optional[str]]] = PrivateAttr(default_factory=dict)
    _redis_retry_at: float = PrivateAttr(default=0.0)

    def _redis_item_setting(self, name: str) -> Optional[str]:
        now = time.monotonic()
        cached = self._item_cache.get(name)
        if cached is not None and cached[0] > now:
            return cached[1]
        if now < self._redis_retry_at:
            return None
        try:
            from recommender.core.redis_client import get_redis_sync
            val = get_redis_sync().get(f"settings:recommendations:{name}")
        except Exception as e:
            # Redis not ready; fall back to env/default until the retry window passes
            self._redis_retry_at = now + self.redis_retry_seconds
            logger.debug(f"Redis settings lookup failed for {name}: {e}")
            return None
        self._item_cache[name] = (now + self.item_setting_cache_seconds, val)
        return val

    def get_item_setting(self, name: str, default: Any = None) -> Any:
        """Resolve a per-item setting such as ``activity_max_recomendations``.

        Order of precedence:
        1) Redis key settings:recommendations:<name> (written by the settings UI),
           cached for ``item_setting_cache_seconds``
        2) Environment variable <NAME>
        3) ``default``
        """
        if self.redis_settings_enabled:
            val = self._redis_item_setting(name)
            if val is not None and val != "":
                return val
        env_val = os.getenv(name.upper())
        if env_val is not None and env_val != "":
            return env_val
        return default

    def max_recommendations(self, item_key: str, limit: Optional[int] = None) -> int:
        """Explicit ``limit`` wins, otherwise ``<item_key>_max_recomendations``."""
        if limit is None:
            limit = self.get_item_setting(f"{item_key}_max_recomendations", self.default_max_recommendations)
        try:
            return int(limit)
        except (TypeError, ValueError):
            logger.warning(f"Invalid max recommendations value for {item_key}: {limit!r}")
            return self.default_max_recommendations


settings = Settings()
