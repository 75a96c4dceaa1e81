from typing import Callable, Dict, List, Union

import httpx

Reply = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class FakeUpstream:
    """
    Scripted upstream for tests, plugged in through ``httpx.MockTransport``.

    Replies are keyed by path (query included). Every request that reaches the
    transport is recorded in ``calls`` with its body already read.
    """

    def __init__(self, replies: Dict[str, Reply] = None):
        self.replies: Dict[str, Reply] = dict(replies or {})
        self.calls: List[httpx.Request] = []

    def route(self, path: str, reply: Reply) -> None:
        self.replies[path] = reply

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def client(self, timeout: float = 30.0) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self.transport(), timeout=httpx.Timeout(timeout)
        )

    @property
    def paths(self) -> List[str]:
        return [self._key(request) for request in self.calls]

    @staticmethod
    def _key(request: httpx.Request) -> str:
        return request.url.raw_path.decode("ascii")

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        reply = self.replies.get(self._key(request))
        if reply is None:
            reply = httpx.Response(404, text="not found")
        elif callable(reply):
            reply = reply(request)
        return unread(reply)


def unread(response: httpx.Response) -> httpx.Response:
    """
    Fresh copy of an in-memory response whose body has not been read yet.

    ``httpx.Response(content=...)`` loads (and decodes) its body on
    construction, so raw streaming would fail on it; a real connection hands
    out an unread stream of the bytes as sent.
    """
    if not isinstance(response.stream, httpx.ByteStream):
        return response
    raw = b"".join(response.stream)
    return httpx.Response(
        response.status_code,
        headers=response.headers,
        stream=httpx.ByteStream(raw),
    )


def redirect(location: str, status_code: int = 302) -> httpx.Response:
    return httpx.Response(
        status_code, headers={"location": location}, text="Redirecting..."
    )


def html(body: str, status_code: int = 200, **headers: str) -> httpx.Response:
    return httpx.Response(
        status_code,
        headers={"content-type": "text/html; charset=utf-8", **headers},
        content=body.encode("utf-8"),
    )


def raises(exc_type: type, message: str = "boom") -> Callable[[httpx.Request], httpx.Response]:
    def _reply(request: httpx.Request) -> httpx.Response:
        raise exc_type(message, request=request)

    return _reply
