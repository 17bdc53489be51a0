"""
Knowledge-base HTTP client used by the bot responder.

Talks to the document service's agent-settings API:

- ``POST /api/agent-settings/documents/search`` with ``{query, limit}``
- ``GET  /api/agent-settings/stats``

Both answer ``{"success": bool, "data": ...}``. Requests go through a tenacity
retry policy for transient failures and an aiobreaker circuit breaker so a
dead knowledge base stops costing a timeout per customer message.

Version: 1.0.0
"""
import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

import aiohttp
from aiobreaker import CircuitBreaker, CircuitBreakerError
from aiohttp import ClientError, ClientSession, ClientTimeout
from cachetools import TTLCache
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config.bot_settings import BotSettings
from ..models.schemas import KnowledgeBaseStats, KnowledgeDocument

logger = logging.getLogger(__name__)

SEARCH_PATH = "/api/agent-settings/documents/search"
STATS_PATH = "/api/agent-settings/stats"


class KnowledgeBaseError(Exception):
    """Knowledge base unavailable or returned an unusable answer."""
    pass


class KnowledgeBaseServerError(KnowledgeBaseError):
    """5xx or rate limiting; worth retrying."""
    pass


class KnowledgeBaseClient:
    """Async client for document search and statistics."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 5.0,
        max_retries: int = 2,
        breaker_fail_max: int = 5,
        breaker_reset_seconds: int = 60,
        cache_ttl: int = 0,
        cache_size: int = 256
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.session: Optional[ClientSession] = None

        self.breaker = CircuitBreaker(
            fail_max=breaker_fail_max,
            timeout_duration=timedelta(seconds=breaker_reset_seconds),
            name="knowledge_base"
        )

        # identical questions within the TTL skip the network
        self.cache: Optional[TTLCache] = (
            TTLCache(maxsize=cache_size, ttl=cache_ttl) if cache_ttl > 0 else None
        )

    @classmethod
    def from_settings(cls, bot_settings: BotSettings) -> "KnowledgeBaseClient":
        return cls(
            base_url=bot_settings.kb_base_url,
            api_key=bot_settings.get_kb_api_key(),
            timeout=bot_settings.kb_timeout,
            max_retries=bot_settings.kb_max_retries,
            breaker_fail_max=bot_settings.kb_breaker_fail_max,
            breaker_reset_seconds=bot_settings.kb_breaker_reset_seconds,
            cache_ttl=bot_settings.kb_cache_ttl_seconds,
            cache_size=bot_settings.kb_cache_size
        )

    async def initialize(self) -> None:
        """Create the pooled HTTP session."""
        if self.session is not None:
            return

        headers = {
            "User-Agent": "LiveSupport/1.0",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        self.session = ClientSession(
            timeout=ClientTimeout(total=self.timeout),
            connector=aiohttp.TCPConnector(limit=20, limit_per_host=10, ttl_dns_cache=300),
            headers=headers
        )
        logger.info(f"Knowledge base client initialized (endpoint: {self.base_url})")

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None
            logger.info("Knowledge base client closed")

    @property
    def breaker_state(self) -> str:
        return self.breaker.current_state.name.lower()

    async def search(self, query: str, limit: int = 3) -> List[KnowledgeDocument]:
        """
        Rank documents by similarity to the query.

        Raises:
            KnowledgeBaseError: Service unavailable or malformed answer
        """
        cache_key = (query.strip().lower(), limit)
        if self.cache is not None and cache_key in self.cache:
            logger.debug(f"Knowledge base cache hit for '{query[:50]}'")
            return [doc.model_copy() for doc in self.cache[cache_key]]

        data = await self._request("POST", SEARCH_PATH, json={"query": query, "limit": limit})

        if not isinstance(data, list):
            raise KnowledgeBaseError("Search response 'data' is not a list")

        documents = [KnowledgeDocument.model_validate(item) for item in data]
        documents.sort(key=lambda doc: doc.similarity, reverse=True)
        if self.cache is not None:
            self.cache[cache_key] = documents
        logger.debug(f"Knowledge base returned {len(documents)} documents")
        return documents

    async def stats(self) -> KnowledgeBaseStats:
        data = await self._request("GET", STATS_PATH)
        return KnowledgeBaseStats.model_validate(data or {})

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        if self.session is None:
            await self.initialize()

        try:
            return await self.breaker.call_async(self._send_with_retry, method, path, **kwargs)
        except CircuitBreakerError as e:
            logger.warning(f"Knowledge base circuit open, skipping {method} {path}")
            raise KnowledgeBaseError("Knowledge base temporarily unavailable") from e
        except (ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Knowledge base request {method} {path} failed: {e}")
            raise KnowledgeBaseError(f"Knowledge base request failed: {e}") from e

    async def _send_with_retry(self, method: str, path: str, **kwargs) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=0.2, min=0.2, max=2.0),
            retry=retry_if_exception_type(
                (ClientError, asyncio.TimeoutError, KnowledgeBaseServerError)
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )
        async for attempt in retrying:
            with attempt:
                return await self._send(method, path, **kwargs)

    async def _send(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"

        async with self.session.request(method, url, **kwargs) as response:
            if response.status == 429 or response.status >= 500:
                raise KnowledgeBaseServerError(
                    f"Knowledge base server error: {response.status}"
                )
            if response.status >= 400:
                raise KnowledgeBaseError(f"Knowledge base API error: {response.status}")

            try:
                body: Dict[str, Any] = await response.json()
            except (aiohttp.ContentTypeError, ValueError) as e:
                raise KnowledgeBaseError(f"Failed to parse knowledge base response: {e}") from e

        if not body.get("success", False):
            raise KnowledgeBaseError(body.get("error") or "Knowledge base reported failure")
        return body.get("data")


__all__ = [
    'KnowledgeBaseClient',
    'KnowledgeBaseError',
    'KnowledgeBaseServerError',
    'SEARCH_PATH',
    'STATS_PATH',
]
