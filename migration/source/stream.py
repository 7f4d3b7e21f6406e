"""
Pull-based async row stream over a live SQL Server cursor
"""

from collections import deque
from typing import Any, Deque, Dict, Optional
import asyncio
import logging

from sqlalchemy.engine import Connection, Result
from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import SourceStreamError

logger = logging.getLogger(__name__)


class SourceRowStream:
    """
    Async iterator over a server-side cursor.

    Rows are fetched in chunks of ``fetch_size`` on a worker thread and handed
    out one at a time as plain dicts. The consumer applies backpressure with
    ``pause()``/``resume()``: while paused, nothing is fetched and a read
    attempt raises.

    Usage:
        stream = await connector.stream(query, params, fetch_size=500)
        try:
            async for row in stream:
                ...
        finally:
            await stream.close()
    """

    def __init__(self, connection: Connection, result: Result, fetch_size: int = 500):
        self._connection = connection
        self._result = result
        self.fetch_size = max(1, fetch_size)
        self._buffer: Deque[Dict[str, Any]] = deque()
        self._exhausted = False
        self._closed = False
        self._paused = False
        self.rows_read = 0

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def closed(self) -> bool:
        return self._closed

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def __aiter__(self) -> "SourceRowStream":
        return self

    async def __anext__(self) -> Dict[str, Any]:
        row = await self.read()
        if row is None:
            raise StopAsyncIteration
        return row

    async def read(self) -> Optional[Dict[str, Any]]:
        """Return the next row, or None once the cursor is exhausted."""
        if self._paused:
            raise SourceStreamError(
                "Read attempted while the stream is paused",
                context={"rows_read": self.rows_read}
            )

        if not self._buffer and not self._exhausted and not self._closed:
            await self._fill()

        if not self._buffer:
            return None

        self.rows_read += 1
        return self._buffer.popleft()

    async def _fill(self) -> None:
        try:
            chunk = await asyncio.to_thread(self._result.fetchmany, self.fetch_size)
        except SQLAlchemyError as e:
            await self.close()
            raise SourceStreamError(
                "Source cursor failed while streaming",
                context={"rows_read": self.rows_read},
                original_exception=e
            )

        if not chunk:
            self._exhausted = True
            return

        self._buffer.extend(dict(row._mapping) for row in chunk)
        if len(chunk) < self.fetch_size:
            self._exhausted = True

    async def close(self) -> None:
        """Release the cursor and its connection. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        self._buffer.clear()

        def _release():
            try:
                self._result.close()
            finally:
                self._connection.close()

        try:
            await asyncio.to_thread(_release)
        except SQLAlchemyError as e:
            logger.warning(f"Error while closing source stream: {e}")
