"""Input channel for live (bidirectional) sessions."""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator

from agent_runtime.types import Blob, Content


@dataclass
class LiveRequest:
    """One item sent to a live model connection."""

    content: Content | None = None
    blob: Blob | None = None
    close: bool = False


class LiveRequestQueue:
    """Queue of live requests; ``close()`` ends iteration."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[LiveRequest] = asyncio.Queue()

    def send_content(self, content: Content) -> None:
        self._queue.put_nowait(LiveRequest(content=content))

    def send_realtime(self, blob: Blob) -> None:
        self._queue.put_nowait(LiveRequest(blob=blob))

    def send(self, request: LiveRequest) -> None:
        self._queue.put_nowait(request)

    def close(self) -> None:
        self._queue.put_nowait(LiveRequest(close=True))

    async def get(self) -> LiveRequest:
        return await self._queue.get()

    def empty(self) -> bool:
        return self._queue.empty()

    async def __aiter__(self) -> AsyncIterator[LiveRequest]:
        while True:
            request = await self.get()
            if request.close:
                return
            yield request
