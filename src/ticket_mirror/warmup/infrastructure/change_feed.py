"""
Change Notification Feed
========================

Redis Streams consumer that turns ticket change notifications into warmup
tasks. Messages carry a JSON ``payload`` field:

    {"ticket_id": "...", "table": "incident", "action": "updated",
     "priority": "1", "state": "2"}
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

from redis import exceptions as redis_exceptions
from redis.asyncio import Redis

from ticket_mirror.core.exceptions import ValidationException
from ticket_mirror.shared.infrastructure.logging import get_logger
from ticket_mirror.warmup.application.services import WarmupScheduler

logger = get_logger(__name__)


class RedisChangeFeed:
    """
    Reads a change stream with ``XREAD`` and feeds ``WarmupScheduler``.

    Starts at ``$`` (only messages published after startup) unless
    ``last_id`` says otherwise.
    """

    def __init__(
        self,
        scheduler: WarmupScheduler,
        redis_url: Optional[str] = None,
        stream: str = "servicenow:changes",
        last_id: str = "$",
        count: int = 50,
        block_ms: int = 5_000,
        error_backoff_seconds: float = 5.0,
        client: Optional[Redis] = None,
    ) -> None:
        self._scheduler = scheduler
        self._redis_url = redis_url
        self._stream = stream
        self._last_id = last_id
        self._count = count
        self._block_ms = block_ms
        self._error_backoff_seconds = error_backoff_seconds
        self._client = client
        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()

    @property
    def client(self) -> Redis:
        if self._client is None:
            if not self._redis_url:
                raise RuntimeError("Change feed needs a Redis URL")
            self._client = Redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    @property
    def last_id(self) -> str:
        return self._last_id

    async def read_entries(self) -> List[Tuple[str, Dict[str, Any]]]:
        """Entries after the last seen id as (message_id, payload) tuples."""
        try:
            response = await self.client.xread(
                streams={self._stream: self._last_id},
                count=self._count,
                block=self._block_ms,
            )
        except redis_exceptions.RedisError:
            logger.exception("Failed to read change stream", extra={"stream": self._stream})
            raise

        entries: List[Tuple[str, Dict[str, Any]]] = []
        for _, messages in response or []:
            for message_id, data in messages:
                payload = data.get("payload")
                if isinstance(payload, str):
                    try:
                        parsed = json.loads(payload)
                    except json.JSONDecodeError:
                        parsed = {"raw": payload}
                else:
                    parsed = dict(data)
                if not isinstance(parsed, dict):
                    parsed = {"raw": parsed}
                entries.append((message_id, parsed))
        return entries

    async def poll_once(self) -> int:
        """Read one batch and queue its tickets. Returns how many were queued."""
        queued = 0
        for message_id, change in await self.read_entries():
            self._last_id = message_id
            try:
                if await self._scheduler.handle_change(change):
                    queued += 1
            except ValidationException as e:
                logger.warning(
                    "Ignoring malformed change notification",
                    extra={"message_id": message_id, "error": e.message}
                )
        if queued:
            logger.info("Change notifications queued for warmup", extra={"queued": queued})
        return queued

    async def run(self) -> None:
        """Poll until ``stop`` is called. Any poll error backs off and retries."""
        logger.info("Change feed started", extra={"stream": self._stream})
        while not self._stop.is_set():
            try:
                await self.poll_once()
            except redis_exceptions.RedisError:
                await asyncio.sleep(self._error_backoff_seconds)
            except Exception:
                logger.exception(
                    "Change feed poll failed, retrying",
                    extra={"stream": self._stream, "last_id": self._last_id}
                )
                await asyncio.sleep(self._error_backoff_seconds)
        logger.info("Change feed stopped", extra={"stream": self._stream})

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
