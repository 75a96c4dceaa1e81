from typing import AsyncIterable, AsyncIterator, List

from starlette.requests import ClientDisconnect

from macaw_proxy.exceptions import ClientDisconnectedError
from macaw_proxy.vars import MAX_REPLAY_BODY_BYTES


class ReplayableBody:
    """
    Inbound request body forwarded upstream chunk by chunk.

    The first pass streams straight from the client. Chunks are retained up to
    ``max_replay_bytes`` so that a method-preserving redirect can send the same
    body again; once the limit is crossed the retained copy is dropped and the
    body can no longer be replayed.
    """

    def __init__(
        self,
        source: AsyncIterable[bytes],
        max_replay_bytes: int = MAX_REPLAY_BODY_BYTES,
    ):
        self._source = source
        self._max_replay_bytes = max_replay_bytes
        self._chunks: List[bytes] = []
        self._size = 0
        self._consumed = False
        self._complete = False
        self._overflowed = False

    @property
    def replayable(self) -> bool:
        """Whether ``stream()`` can still produce the full body."""
        if not self._consumed:
            return True
        return self._complete and not self._overflowed

    def stream(self) -> AsyncIterator[bytes]:
        if not self._consumed:
            self._consumed = True
            return self._first_pass()
        if not self.replayable:
            raise RuntimeError("request body was not retained and cannot be replayed")
        return self._replay()

    async def _first_pass(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._source:
                if not chunk:
                    continue
                self._retain(chunk)
                yield chunk
        except ClientDisconnect as e:
            raise ClientDisconnectedError("client disconnected while sending body") from e
        self._complete = True

    async def _replay(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            yield chunk

    def _retain(self, chunk: bytes) -> None:
        if self._overflowed:
            return
        self._size += len(chunk)
        if self._size > self._max_replay_bytes:
            self._overflowed = True
            self._chunks = []
            return
        self._chunks.append(chunk)
