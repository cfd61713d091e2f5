from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ..config import load_settings
from ..domain.errors import (
    BackendError,
    BackendUnavailable,
    Cancelled,
    ConfigurationError,
    PriceListError,
    RecoveryError,
    UnsupportedMediaType,
)
from ..domain.models import PriceList, RawImage
from ..logging import get_logger
from ..orchestrator.analyze import PriceListAnalyzer, build_analyzer
from ..pipeline.encode import decode, parse_data_url


LOG = get_logger("frontend")

DOWNLOAD_FILENAME = "price-list.json"
MAX_UPLOAD_BYTES = 20 * 1024 * 1024

_STATUS_BY_ERROR = (
    (UnsupportedMediaType, 415),
    (BackendUnavailable, 503),
    (BackendError, 502),
    (RecoveryError, 502),
    (Cancelled, 499),
    (ConfigurationError, 500),
)


def _status_for(exc: PriceListError) -> int:
    for cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return status
    return 500


def _error(code: str, detail: str, status_code: int, *, retryable: bool = False) -> JSONResponse:
    return JSONResponse({"error": code, "detail": detail, "retryable": retryable}, status_code=status_code)


def create_app(
    analyzer: Optional[PriceListAnalyzer] = None,
    *,
    analyzer_factory: Optional[Callable[[], PriceListAnalyzer]] = None,
    allow_origins: Optional[List[str]] = None,
) -> Starlette:
    """Create a Starlette app exposing single-image analysis and the session result.

    The app keeps one in-memory result and accepts one analysis at a time;
    a second upload while one is running gets 409.
    """

    session: Dict[str, Any] = {"result": None, "analyzer": analyzer}
    busy = threading.Lock()

    def _analyzer() -> PriceListAnalyzer:
        if session["analyzer"] is None:
            factory = analyzer_factory or (lambda: build_analyzer(load_settings()))
            session["analyzer"] = factory()
        return session["analyzer"]

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "has_result": session["result"] is not None})

    async def _json_image(request: Request) -> RawImage:
        try:
            body = await request.json()
        except ValueError as exc:
            raise ValueError("Request body is not valid JSON") from exc
        url = body.get("image") if isinstance(body, dict) else None
        if not isinstance(url, str):
            raise ValueError("Send the image as a data URL in the 'image' field.")
        payload = parse_data_url(url.strip())
        filename = body.get("filename") if isinstance(body.get("filename"), str) else None
        return RawImage(data=decode(payload), media_type=payload.media_type, filename=filename)

    async def _form_image(request: Request) -> Optional[RawImage]:
        form = await request.form()
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            return None
        data = await upload.read()
        return RawImage(data=data, media_type=upload.content_type, filename=upload.filename)

    async def analyze(request: Request) -> JSONResponse:
        if request.headers.get("content-type", "").startswith("application/json"):
            try:
                image = await _json_image(request)
            except ValueError as exc:
                return _error("invalid_image", str(exc), 400)
        else:
            image = await _form_image(request)
            if image is None:
                return _error("missing_file", "Upload an image in the 'file' field.", 400)
        if not image.data:
            return _error("empty_file", "The uploaded file is empty.", 400)
        if image.size > MAX_UPLOAD_BYTES:
            return _error("file_too_large", "Image too large. Maximum size is 20 MB.", 413)

        if not busy.acquire(blocking=False):
            LOG.warning("Rejected upload while another analysis is running")
            return _error("busy", "An analysis is already running. Please wait.", 409, retryable=True)
        try:
            result = await run_in_threadpool(lambda: _analyzer().analyze(image))
        except PriceListError as exc:
            LOG.error("Analysis failed (%s): %s", exc.code, exc.detail)
            body = exc.as_dict()
            return JSONResponse(body, status_code=_status_for(exc))
        finally:
            busy.release()

        session["result"] = result.price_list
        return JSONResponse(result.as_dict())

    def _current() -> Optional[PriceList]:
        return session["result"]

    async def get_result(_: Request) -> JSONResponse:
        price_list = _current()
        if price_list is None:
            return _error("no_result", "No analysis result yet.", 404)
        return JSONResponse(price_list.as_dict())

    async def download_result(_: Request) -> Response:
        price_list = _current()
        if price_list is None:
            return _error("no_result", "No analysis result yet.", 404)
        return Response(
            content=price_list.to_json(indent=2).encode("utf-8"),
            media_type="application/json",
            headers={"Content-Disposition": f'attachment; filename="{DOWNLOAD_FILENAME}"'},
        )

    async def clear_result(_: Request) -> Response:
        session["result"] = None
        return Response(status_code=204)

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/analyze", analyze, methods=["POST"]),
        Route("/api/result", get_result, methods=["GET"]),
        Route("/api/result", clear_result, methods=["DELETE"]),
        Route("/api/result/download", download_result, methods=["GET"]),
    ]

    app = Starlette(debug=False, routes=routes)

    origins = allow_origins or ["http://localhost:3000", "http://127.0.0.1:3000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in origins else origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


__all__ = ["create_app", "DOWNLOAD_FILENAME"]
