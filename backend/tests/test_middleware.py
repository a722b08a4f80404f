from fastapi import FastAPI
from fastapi.testclient import TestClient

from timetabler.core.middleware import RequestSizeLimitMiddleware, RequestTimingMiddleware


def build_app(max_bytes: int) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=max_bytes)
    app.add_middleware(RequestTimingMiddleware)

    @app.post("/echo")
    def echo(payload: dict) -> dict:
        return payload

    return app


def test_oversized_body_is_rejected():
    client = TestClient(build_app(max_bytes=16))
    response = client.post("/echo", json={"sessions": ["B1:CS101:0", "B1:CS101:1"]})
    assert response.status_code == 413
    assert response.json()["details"] == {"max_bytes": 16}


def test_small_body_passes_with_timing_header():
    client = TestClient(build_app(max_bytes=1024))
    response = client.post("/echo", json={"ok": True})
    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert "X-Process-Time-Ms" in response.headers
