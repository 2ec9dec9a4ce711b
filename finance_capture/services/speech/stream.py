"""
Transcript Stream

Bridges recognizer callbacks (which may fire on an audio thread) into an
async iterator that the caller consumes on the event loop:

    async for item in stream:
        if isinstance(item, TranscriptFinal):
            ...

Each opened stream yields any number of TranscriptUpdate items followed by
exactly one TranscriptFinal, then ends. Iterating a stream that has already
delivered its final yields only that final. open() starts a fresh stream, so
a stream object can be reused for the next recording.
"""

import asyncio
from datetime import datetime
from typing import AsyncIterator, Optional, Union

from finance_capture.models.event import TranscriptFinal, TranscriptUpdate

TranscriptItem = Union[TranscriptUpdate, TranscriptFinal]


class TranscriptStream:

    def __init__(self):
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._finalized = True

    @property
    def is_open(self) -> bool:
        return self._queue is not None and not self._finalized

    def open(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Start a new stream; anything left from the previous one is dropped."""
        self._loop = loop or asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._finalized = False

    def publish(self, text: str) -> None:
        """Push an in-progress transcript. Safe to call from any thread."""
        if not self.is_open:
            return
        self._put(TranscriptUpdate(text=text))

    def finalize(self, text: str, capture_start: datetime) -> None:
        """Push the final transcript and close the stream. Idempotent."""
        if not self.is_open:
            return
        self._finalized = True
        self._put(TranscriptFinal(text=text, capture_start=capture_start))

    def _put(self, item: TranscriptItem) -> None:
        queue = self._queue
        self._loop.call_soon_threadsafe(queue.put_nowait, item)

    def __aiter__(self) -> AsyncIterator[TranscriptItem]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[TranscriptItem]:
        queue = self._queue
        if queue is None:
            return
        while True:
            item = await queue.get()
            if isinstance(item, TranscriptFinal):
                # Left queued so a finished stream keeps ending with its final
                queue.put_nowait(item)
                yield item
                return
            yield item
