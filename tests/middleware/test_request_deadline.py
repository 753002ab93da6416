import asyncio
import json

import pytest

from src.middleware.request_deadline import TIMEOUT_MESSAGE, RequestDeadlineMiddleware


def http_scope(path: str = "/api/generate-diagram") -> dict:
    return {
        "type": "http",
        "method": "POST",
        "path": path,
        "raw_path": path.encode(),
        "query_string": b"",
        "headers": [],
        "client": ("127.0.0.1", 5000),
        "server": ("testserver", 80),
        "scheme": "http",
        "http_version": "1.1",
        "root_path": "",
    }


async def receive() -> dict:
    return {"type": "http.request", "body": b"", "more_body": False}


class Recorder:
    def __init__(self) -> None:
        self.messages: list[dict] = []

    async def __call__(self, message: dict) -> None:
        self.messages.append(message)

    @property
    def statuses(self) -> list[int]:
        return [m["status"] for m in self.messages if m["type"] == "http.response.start"]

    def json_body(self) -> dict:
        body = b"".join(m.get("body", b"") for m in self.messages if m["type"] == "http.response.body")
        return json.loads(body)


def make_app(delay: float, status: int = 200, started: asyncio.Event | None = None):
    finished = asyncio.Event()

    async def app(scope, receive, send) -> None:
        if started is not None:
            await send({"type": "http.response.start", "status": status, "headers": []})
        await asyncio.sleep(delay)
        if started is None:
            await send({"type": "http.response.start", "status": status, "headers": []})
        await send({"type": "http.response.body", "body": b'{"ok": true}'})
        finished.set()

    return app, finished


@pytest.mark.asyncio
async def test_fast_handler_passes_through() -> None:
    app, _ = make_app(0)
    middleware = RequestDeadlineMiddleware(app, timeout=1.0)
    recorder = Recorder()

    await middleware(http_scope(), receive, recorder)

    assert recorder.statuses == [200]
    assert recorder.json_body() == {"ok": True}


@pytest.mark.asyncio
async def test_slow_handler_gets_single_timeout_response() -> None:
    app, finished = make_app(0.2, status=201)
    middleware = RequestDeadlineMiddleware(app, timeout=0.05)
    recorder = Recorder()

    await middleware(http_scope(), receive, recorder)

    assert recorder.statuses == [408]
    assert recorder.json_body() == {
        "status": "error",
        "message": TIMEOUT_MESSAGE,
        "code": "REQUEST_TIMEOUT",
    }
    assert middleware.abandoned_count == 1

    # 处理器继续运行至结束，但其输出被丢弃
    await asyncio.wait_for(finished.wait(), timeout=1.0)
    await asyncio.sleep(0.01)
    assert recorder.statuses == [408]
    assert middleware.abandoned_count == 0


@pytest.mark.asyncio
async def test_started_response_is_not_interrupted() -> None:
    app, _ = make_app(0.1, started=asyncio.Event())
    middleware = RequestDeadlineMiddleware(app, timeout=0.02)
    recorder = Recorder()

    await middleware(http_scope(), receive, recorder)

    assert recorder.statuses == [200]
    assert middleware.abandoned_count == 0


@pytest.mark.asyncio
async def test_excluded_path_is_not_guarded() -> None:
    app, _ = make_app(0.05)
    middleware = RequestDeadlineMiddleware(app, timeout=0.01, exclude_paths=("/health",))
    recorder = Recorder()

    await middleware(http_scope("/health"), receive, recorder)

    assert recorder.statuses == [200]


@pytest.mark.asyncio
async def test_handler_error_after_timeout_is_discarded() -> None:
    async def failing_app(scope, receive, send) -> None:
        await asyncio.sleep(0.1)
        raise RuntimeError("boom")

    middleware = RequestDeadlineMiddleware(failing_app, timeout=0.02)
    recorder = Recorder()

    await middleware(http_scope(), receive, recorder)
    assert recorder.statuses == [408]

    await asyncio.sleep(0.15)
    assert middleware.abandoned_count == 0
