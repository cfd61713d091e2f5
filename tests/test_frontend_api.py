from __future__ import annotations

import base64
import io
import json
import threading
from types import SimpleNamespace

from PIL import Image
from starlette.testclient import TestClient

from pricelist_automation.config import Settings
from pricelist_automation.domain.errors import BackendUnavailable
from pricelist_automation.frontend import app as frontend_app
from pricelist_automation.frontend import create_app
from pricelist_automation.orchestrator.analyze import PriceListAnalyzer, build_analyzer
from pricelist_automation.pipeline.request import ExtractionRequester


REPLY = (
    'Result: {"category": "Nail Bar", "service": ['
    '{"name": "Gel polish", "price": "$35", "originalPrice": "$40", "group": "Hands"}], '
    '"analyzedAt": "2024-07-01T10:00:00Z"}'
)


def _analyzer(reply: str = REPLY, exc: Exception | None = None) -> PriceListAnalyzer:
    def create(**_kwargs):
        if exc is not None:
            raise exc
        message = SimpleNamespace(content=reply)
        return SimpleNamespace(id="chatcmpl-api", usage=None, choices=[SimpleNamespace(message=message)])

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    return PriceListAnalyzer(ExtractionRequester(client))


def _png() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (40, 30), (255, 255, 255)).save(buf, format="PNG")
    return buf.getvalue()


def test_analyze_then_fetch_and_download_result():
    client = TestClient(create_app(_analyzer()))

    assert client.get("/api/result").status_code == 404

    resp = client.post("/api/analyze", files={"file": ("menu.png", _png(), "image/png")})
    assert resp.status_code == 200
    body = resp.json()
    assert body["result"]["category"] == "Nail Bar"
    assert body["result"]["service"][0]["originalPrice"] == "$40"
    assert body["compression"]["fallback"] is False
    assert body["warnings"] == []

    current = client.get("/api/result")
    assert current.status_code == 200
    assert current.json() == body["result"]

    download = client.get("/api/result/download")
    assert download.status_code == 200
    assert 'filename="price-list.json"' in download.headers["content-disposition"]
    assert json.loads(download.content.decode("utf-8")) == body["result"]
    assert download.text.startswith('{\n  "category"')


def test_analyze_accepts_json_data_url():
    client = TestClient(create_app(_analyzer()))
    url = "data:image/png;base64," + base64.b64encode(_png()).decode("ascii")

    resp = client.post("/api/analyze", json={"image": url, "filename": "menu.png"})

    assert resp.status_code == 200
    assert resp.json()["result"]["category"] == "Nail Bar"


def test_invalid_data_url_is_400():
    client = TestClient(create_app(_analyzer()))

    resp = client.post("/api/analyze", json={"image": "https://example.com/menu.png"})

    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_image"


def test_clear_result():
    client = TestClient(create_app(_analyzer()))
    client.post("/api/analyze", files={"file": ("menu.png", _png(), "image/png")})

    assert client.delete("/api/result").status_code == 204
    assert client.get("/api/result").status_code == 404


def test_non_image_upload_is_415():
    client = TestClient(create_app(_analyzer()))

    resp = client.post("/api/analyze", files={"file": ("notes.txt", b"hello", "text/plain")})

    assert resp.status_code == 415
    assert resp.json()["error"] == "unsupported_media_type"
    assert resp.json()["retryable"] is False


def test_missing_and_empty_upload_is_400():
    client = TestClient(create_app(_analyzer()))

    assert client.post("/api/analyze", data={"other": "x"}).status_code == 400
    resp = client.post("/api/analyze", files={"file": ("menu.png", b"", "image/png")})
    assert resp.status_code == 400
    assert resp.json()["error"] == "empty_file"


def test_backend_unavailable_is_503_and_keeps_previous_result():
    ok_app = create_app(_analyzer())
    client = TestClient(ok_app)
    client.post("/api/analyze", files={"file": ("menu.png", _png(), "image/png")})

    failing = TestClient(create_app(_analyzer(exc=BackendUnavailable("offline"))))
    resp = failing.post("/api/analyze", files={"file": ("menu.png", _png(), "image/png")})

    assert resp.status_code == 503
    assert resp.json()["error"] == "backend_unavailable"
    assert resp.json()["retryable"] is True
    assert failing.get("/api/result").status_code == 404
    assert client.get("/api/result").status_code == 200


def test_unparseable_reply_is_502():
    client = TestClient(create_app(_analyzer(reply="no json here")))

    resp = client.post("/api/analyze", files={"file": ("menu.png", _png(), "image/png")})

    assert resp.status_code == 502
    assert resp.json()["error"] == "no_json_found"


def test_second_upload_while_analyzing_is_409():
    entered = threading.Event()
    release = threading.Event()

    def create(**_kwargs):
        entered.set()
        release.wait(timeout=10)
        message = SimpleNamespace(content=REPLY)
        return SimpleNamespace(id="chatcmpl-slow", usage=None, choices=[SimpleNamespace(message=message)])

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    app = create_app(PriceListAnalyzer(ExtractionRequester(client)))
    responses = []

    def first_upload():
        responses.append(TestClient(app).post("/api/analyze", files={"file": ("menu.png", _png(), "image/png")}))

    worker = threading.Thread(target=first_upload)
    worker.start()
    try:
        assert entered.wait(timeout=10)
        busy = TestClient(app).post("/api/analyze", files={"file": ("menu.png", _png(), "image/png")})
    finally:
        release.set()
        worker.join(timeout=10)

    assert busy.status_code == 409
    assert busy.json()["error"] == "busy"
    assert busy.json()["retryable"] is True
    assert responses[0].status_code == 200
    assert TestClient(app).get("/api/result").json()["category"] == "Nail Bar"


def test_oversized_upload_is_413(monkeypatch):
    monkeypatch.setattr(frontend_app, "MAX_UPLOAD_BYTES", 16)
    client = TestClient(create_app(_analyzer()))

    resp = client.post("/api/analyze", files={"file": ("menu.png", _png(), "image/png")})

    assert resp.status_code == 413
    assert resp.json()["error"] == "file_too_large"


def test_invalid_settings_give_structured_error():
    settings = Settings(api_key="sk-test", base_url=None, quality=0.0)
    client = TestClient(create_app(analyzer_factory=lambda: build_analyzer(settings)))

    resp = client.post("/api/analyze", files={"file": ("menu.png", _png(), "image/png")})

    assert resp.status_code == 500
    assert resp.json()["error"] == "configuration_error"
    assert resp.json()["retryable"] is False


def test_analyzer_is_built_lazily_from_factory():
    built = []

    def factory():
        built.append(True)
        return _analyzer()

    client = TestClient(create_app(analyzer_factory=factory))

    assert client.get("/api/health").json() == {"status": "ok", "has_result": False}
    assert built == []
    client.post("/api/analyze", files={"file": ("menu.png", _png(), "image/png")})
    client.post("/api/analyze", files={"file": ("menu.png", _png(), "image/png")})
    assert built == [True]
