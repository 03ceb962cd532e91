"""
Shared test helpers: sample image bytes and a fake requests session
"""
import base64
import threading


PNG_1X1 = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mP8"
    "/w8AAgMBgN6M6vQAAAAASUVORK5CYII="
)
JPEG_HEAD = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01"
GIF_HEAD = b"GIF89a\x01\x00\x01\x00\x80\x00\x00"
HTML_ERROR_PAGE = b"<!DOCTYPE html><html><body>Sign in to GitHub</body></html>"


class FakeResponse:
    def __init__(self, status_code=200, content=b"", headers=None, url=None):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self.url = url
        self.closed = False
        self.bytes_read = 0

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.content), chunk_size):
            chunk = self.content[start : start + chunk_size]
            self.bytes_read += len(chunk)
            yield chunk

    def close(self):
        self.closed = True


class FakeSession:
    """Maps URLs to responses or exceptions; records every request."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self.closed = False
        self._lock = threading.Lock()

    def get(self, url, **kwargs):
        with self._lock:
            self.calls.append((url, kwargs))
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(status_code=404, content=b"Not Found", url=url)
        if isinstance(route, BaseException):
            raise route
        if route.url is None:
            route.url = url
        return route

    def close(self):
        self.closed = True

