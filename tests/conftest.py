from __future__ import annotations

import threading

import httpx
import pytest

from m3u8_downloader import BaseCore, M3U8Downloader
from m3u8_downloader.modules.config import RuntimeConfig

BASE_URL = "http://127.0.0.1:3000"
M3U8_URL = f"{BASE_URL}/video.m3u8"


def media_playlist(names) -> str:
    lines = ["#EXTM3U", "#EXT-X-VERSION:3", "#EXT-X-TARGETDURATION:2", "#EXT-X-MEDIA-SEQUENCE:0"]
    for name in names:
        lines += ["#EXTINF:2.000000,", name]
    lines.append("#EXT-X-ENDLIST")
    return "\n".join(lines) + "\n"


class FakeServer:
    """Serves registered paths through httpx.MockTransport. A route is bytes/str or a callable taking the request."""

    def __init__(self):
        self.routes = {}
        self.requests = []
        self._lock = threading.Lock()

    def add(self, path, body):
        self.routes[path] = body

    def handler(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)

        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, text="Not Found")
        if callable(route):
            return route(request)
        if isinstance(route, str):
            route = route.encode()
        return httpx.Response(200, content=route)

    def paths(self):
        with self._lock:
            return [r.url.path for r in self.requests]

    def count(self, path):
        return self.paths().count(path)


class Gate:
    """A route that blocks until released, so tests can act while a segment is in flight."""

    def __init__(self, body: bytes):
        self.body = body
        self.entered = threading.Event()
        self.release = threading.Event()

    def __call__(self, request):
        self.entered.set()
        self.release.wait(5)
        return httpx.Response(200, content=self.body)


def segment_bytes(count):
    return [bytes([0x47, index]) * (500 + 250 * index) for index in range(count)]


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def runtime_config():
    cfg = RuntimeConfig()
    cfg.use_http2 = False
    cfg.timeout = 5
    return cfg


@pytest.fixture
def core(server, runtime_config):
    core = BaseCore(config=runtime_config, retries=0, transport=httpx.MockTransport(server.handler))
    yield core
    core.close()


@pytest.fixture
def serve_segments(server):
    def serve(count, path="/video.m3u8"):
        data = segment_bytes(count)
        server.add(path, media_playlist([f"segment{i}.ts" for i in range(count)]))
        for index, body in enumerate(data):
            server.add(f"/segment{index}.ts", body)
        return data

    return serve


@pytest.fixture
def segments_dir(tmp_path):
    return tmp_path / "segments"


@pytest.fixture
def make_downloader(tmp_path, segments_dir, core):
    def factory(url=M3U8_URL, output=None, **options):
        options.setdefault("segments_dir", str(segments_dir))
        output = output or str(tmp_path / "output.ts")
        return M3U8Downloader(url, output, core=core, **options)

    return factory


@pytest.fixture
def run_in_thread():
    threads = []

    def start(downloader):
        thread = threading.Thread(target=downloader.download, daemon=True)
        thread.start()
        threads.append(thread)
        return thread

    yield start
    for thread in threads:
        thread.join(5)
