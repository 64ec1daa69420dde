from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.datastructures import UploadFile

from ..config import ViewerConfig, load_config
from ..fetcher import FetchFn
from ..media import HandleRevokedError
from ..player import PlaybackRejectedError, PlayerEvent
from ..status import AnalysisResult, InvalidTransitionError
from ..view import ResultView, build_view
from .range import ranged_bytes_response, ranged_file_response

logger = logging.getLogger(__name__)

UPLOAD_FIELD = "video"
_READ_CHUNK = 1024 * 1024


class UploadError(Exception):
    """Rejected upload; the message is returned to the client as-is."""


def _safe_suffix(filename: str) -> str:
    suffix = Path(filename or "").suffix.lower()
    if not suffix or len(suffix) > 8 or not suffix[1:].isalnum():
        return ".mp4"
    return suffix


async def _read_upload(request: Request, config: ViewerConfig) -> tuple[UploadFile, bytes]:
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("multipart/form-data"):
        raise UploadError("Expected multipart/form-data")

    try:
        form = await request.form()
    except Exception as e:
        raise UploadError(f"Malformed multipart body: {e}") from e

    files = [f for f in form.getlist(UPLOAD_FIELD) if isinstance(f, UploadFile)]
    if not files:
        raise UploadError("No video file provided")
    if len(files) > 1:
        raise UploadError("Unexpected field")
    upload = files[0]

    if not (upload.content_type or "").startswith("video/"):
        raise UploadError("Only video files are allowed")

    limit = config.max_upload_bytes
    chunks = []
    total = 0
    while True:
        chunk = await upload.read(_READ_CHUNK)
        if not chunk:
            break
        total += len(chunk)
        if total > limit:
            raise UploadError("File too large")
        chunks.append(chunk)
    if total == 0:
        raise UploadError("Empty video file")
    return upload, b"".join(chunks)


class ViewerContext:
    """Holds the result view and the current input video for the app."""

    def __init__(self, config: ViewerConfig, view: ResultView):
        self.config = config
        self.view = view
        self.input_path: Optional[Path] = None
        self.input_media_type = "video/mp4"

    def replace_input(self, data: bytes, *, filename: str, media_type: str) -> Path:
        upload_dir = self.config.upload_dir
        upload_dir.mkdir(parents=True, exist_ok=True)
        path = upload_dir / f"{uuid.uuid4().hex}{_safe_suffix(filename)}"
        path.write_bytes(data)

        previous = self.input_path
        self.input_path = path
        self.input_media_type = media_type
        if previous is not None and previous != path:
            previous.unlink(missing_ok=True)
        return path


def view_payload(view: ResultView) -> Dict[str, Any]:
    payload = view.render().to_dict()
    for cell in payload["cells"]:
        media = cell.get("media")
        if media is not None:
            media["src"] = f"/media/{media['id']}"
    payload["players"] = {
        "primary": view.primary.to_dict(),
        "secondaries": {kind: p.to_dict() for kind, p in view.players.items()},
    }
    return payload


def create_app(
    config: Optional[ViewerConfig] = None,
    *,
    fetch: Optional[FetchFn] = None,
) -> FastAPI:
    config = config or load_config(None)

    def on_error(kind: str, exc: Exception) -> None:
        logger.warning("artifact %s unavailable for this result: %s", kind, exc)

    view = build_view(config, fetch=fetch, on_error=on_error)
    view.mount()
    ctx = ViewerContext(config, view)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await view.shutdown()
        if ctx.input_path is not None:
            ctx.input_path.unlink(missing_ok=True)

    app = FastAPI(title="CardioView", lifespan=lifespan)
    app.state.ctx = ctx

    @app.get("/api/health")
    async def api_health() -> JSONResponse:
        return JSONResponse({"ok": True})

    @app.post("/video")
    async def upload_video(request: Request) -> JSONResponse:
        try:
            upload, data = await _read_upload(request, config)
        except UploadError as e:
            logger.info("upload rejected: %s", e)
            return JSONResponse({"error": str(e)}, status_code=400)

        media_type = upload.content_type or "video/mp4"
        path = await asyncio.to_thread(
            ctx.replace_input, data, filename=upload.filename or "", media_type=media_type
        )
        view.set_input("/input")
        view.tracker.start_processing(order=view.tracker.order + 1)
        job_id = uuid.uuid4().hex
        logger.info("accepted upload %s (%d bytes) as job %s", upload.filename, len(data), job_id)
        return JSONResponse(
            {
                "message": "Video uploaded successfully",
                "filename": path.name,
                "job_id": job_id,
                "order": view.tracker.order,
            }
        )

    @app.post("/api/result")
    async def api_result(payload: Dict[str, Any] = Body(...)) -> JSONResponse:
        try:
            result = AnalysisResult.from_dict(payload)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"invalid_result: {e}")
        try:
            view.tracker.complete(result)
        except InvalidTransitionError:
            raise HTTPException(status_code=409, detail="not_processing")
        return JSONResponse(view_payload(view))

    @app.post("/api/reset")
    async def api_reset() -> JSONResponse:
        view.tracker.reset()
        return JSONResponse(view_payload(view))

    @app.get("/api/view")
    async def api_view() -> JSONResponse:
        return JSONResponse(view_payload(view))

    @app.get("/input")
    async def get_input(request: Request) -> StreamingResponse:
        path = ctx.input_path
        if path is None or not path.exists():
            raise HTTPException(status_code=404, detail="no_input")
        return ranged_file_response(request, path, media_type=ctx.input_media_type)

    @app.get("/media/{handle_id}")
    async def get_media(handle_id: str, request: Request) -> StreamingResponse:
        try:
            handle, data = view.manager.registry.resolve(handle_id)
        except HandleRevokedError:
            raise HTTPException(status_code=404, detail="handle_not_found")
        return ranged_bytes_response(request, data, media_type=handle.media_type)

    @app.post("/api/player")
    async def api_player(payload: Dict[str, Any] = Body(...)) -> JSONResponse:
        try:
            event = PlayerEvent(str(payload.get("event", "")))
            position = float(payload.get("position", view.primary.current_time))
        except (TypeError, ValueError):
            raise HTTPException(status_code=400, detail="invalid_player_event")

        primary = view.primary
        if event == PlayerEvent.PLAY:
            primary.seek(position)
            try:
                primary.play()
            except PlaybackRejectedError:
                raise HTTPException(status_code=409, detail="no_input")
        elif event == PlayerEvent.PAUSE:
            primary.seek(position)
            primary.pause()
        else:
            primary.seek(position)
        return JSONResponse(view_payload(view)["players"])

    return app
