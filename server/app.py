# =============================================================================
# Closet Tagger VLM - FastAPI Server Application
# =============================================================================
# Defines the HTTP API endpoints for uploading clothing photos, tagging them
# with the on-device VLM through the TaggingService, and managing the
# in-memory closet (list, rename, delete).  Also exposes the onboarding
# warm-up (model load), model reset, cancellation and health endpoints.
#
# Route handlers are plain (sync) functions, so Starlette runs them in its
# worker threadpool; a cancel request can therefore arrive while a tag
# request is still generating.
# =============================================================================

import logging
import threading
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import APIRouter, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse

from config import get_config
from server.closet import ClosetItem, ClosetStore
from shared.schemas import (
    AlertPayload,
    CancelResponse,
    ClosetItemResponse,
    ClosetListResponse,
    HealthResponse,
    ModelStateResponse,
    RenameItemRequest,
    TagResponse,
)
from tagger.cancellation import CancellationToken
from tagger.coordinator import InferenceCoordinator
from tagger.engines import create_engine
from tagger.errors import TaggingError, TaggingErrorKind
from tagger.imaging import decode_image
from tagger.normalizer import NO_CLOTHING
from tagger.service import Alert, TaggingService, alert_for_error, alert_for_tag
from tagger.session import ModelSession, SessionEvent

logger = logging.getLogger(__name__)

# HTTP status per TaggingError kind
_ERROR_STATUS = {
    TaggingErrorKind.BUSY: 409,
    TaggingErrorKind.LOAD_FAILED: 500,
    TaggingErrorKind.GENERATION_FAILED: 500,
    TaggingErrorKind.CANCELLED: 200,
}


def _log_session_event(event: SessionEvent) -> None:
    if event.duration is not None:
        logger.info("Model session event: %s (%.2fs)", event.kind, event.duration)
    else:
        logger.info("Model session event: %s", event.kind)


def build_tagging_service(config) -> TaggingService:
    """
    Wire engine, model session, coordinator and facade from the config.

    Nothing is loaded here; the model loads on warm-up or the first tag.
    """
    engine = create_engine(config)
    session = ModelSession(engine, on_event=_log_session_event)
    coordinator = InferenceCoordinator(session, config.generation_config())
    return TaggingService(coordinator, config.prompt_template())


def _alert_payload(alert: Optional[Alert]) -> Optional[AlertPayload]:
    if alert is None:
        return None
    return AlertPayload(kind=alert.kind.value, message=alert.message)


def _item_response(item: ClosetItem) -> ClosetItemResponse:
    return ClosetItemResponse(
        id=item.id,
        tag=item.tag,
        width=item.image.width,
        height=item.image.height,
        created_at=item.created_at,
    )


router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health_check(request: Request):
    """
    Health check endpoint.

    Returns server status, whether the model is loaded, whether a tag request
    is being processed, and uptime.
    """
    state = request.app.state
    service: TaggingService = state.tagging_service
    uptime = time.time() - state.start_time if state.start_time > 0 else 0.0
    return HealthResponse(
        status="ok" if service.model_loaded else "idle",
        model_loaded=service.model_loaded,
        is_processing=service.is_processing,
        uptime_seconds=round(uptime, 2),
    )


@router.post("/api/v1/model/load", response_model=ModelStateResponse)
def load_model(request: Request):
    """Onboarding warm-up: load the model so the first tag is fast."""
    service: TaggingService = request.app.state.tagging_service
    try:
        load_seconds = service.warm_up()
    except TaggingError as exc:
        logger.error("Error loading model: %s", exc.__cause__ or exc)
        body = ModelStateResponse(model_loaded=False, alert=_alert_payload(alert_for_error(exc)))
        return JSONResponse(status_code=500, content=body.model_dump())
    return ModelStateResponse(model_loaded=True, load_seconds=round(load_seconds, 3))


@router.post("/api/v1/model/reset", response_model=ModelStateResponse)
def reset_model(request: Request):
    """Drop the loaded model and free accelerator memory."""
    service: TaggingService = request.app.state.tagging_service
    service.reset()
    return ModelStateResponse(model_loaded=service.model_loaded)


@router.post("/api/v1/tag", response_model=TagResponse)
def tag_image(request: Request, image: UploadFile = File(...)):
    """
    Tag an uploaded clothing photo.

    On success the item is appended to the closet.  "No clothing" answers
    return a Warning alert and add nothing.  A request arriving while
    another one is generating is rejected with 409 (it is not queued).
    """
    state = request.app.state
    service: TaggingService = state.tagging_service

    try:
        pil_image = decode_image(image.file.read())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    token = CancellationToken()
    with state.token_lock:
        state.active_tokens.add(token)

    start = time.time()
    try:
        tag = service.tag(pil_image, cancel_token=token)
    except TaggingError as exc:
        elapsed_ms = (time.time() - start) * 1000.0
        if exc.kind is TaggingErrorKind.CANCELLED:
            status = "cancelled"
        elif exc.kind is TaggingErrorKind.BUSY:
            status = "busy"
        else:
            status = "failed"
            logger.error("Tagging failed (%s): %s", exc.kind.value, exc.__cause__ or exc)
        body = TagResponse(
            status=status,
            alert=_alert_payload(alert_for_error(exc)),
            processing_time_ms=round(elapsed_ms, 2),
        )
        return JSONResponse(status_code=_ERROR_STATUS[exc.kind], content=body.model_dump())
    finally:
        with state.token_lock:
            state.active_tokens.discard(token)

    elapsed_ms = (time.time() - start) * 1000.0

    if tag is NO_CLOTHING:
        logger.warning("Image does not contain a recognized clothing item.")
        return TagResponse(
            status="no_clothing",
            alert=_alert_payload(alert_for_tag(tag)),
            processing_time_ms=round(elapsed_ms, 2),
        )

    item = state.closet.add(pil_image, tag)
    return TagResponse(
        status="tagged",
        tag=tag,
        item=_item_response(item),
        processing_time_ms=round(elapsed_ms, 2),
    )


@router.post("/api/v1/tag/cancel", response_model=CancelResponse)
def cancel_tagging(request: Request):
    """Cancel the tag request currently in flight, if any."""
    state = request.app.state
    with state.token_lock:
        tokens = list(state.active_tokens)
    for token in tokens:
        token.cancel()
    if tokens:
        logger.info("Cancellation requested for %d tag request(s)", len(tokens))
    return CancelResponse(cancelled=bool(tokens))


@router.get("/api/v1/closet", response_model=ClosetListResponse)
def list_closet(request: Request):
    """List closet items in insertion order."""
    items = request.app.state.closet.list()
    return ClosetListResponse(
        items=[_item_response(item) for item in items],
        total_count=len(items),
    )


@router.patch("/api/v1/closet/{item_id}", response_model=ClosetItemResponse)
def rename_item(item_id: str, payload: RenameItemRequest, request: Request):
    """Edit the tag of a closet item."""
    item = request.app.state.closet.rename(item_id, payload.tag)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
    return _item_response(item)


@router.delete("/api/v1/closet/{item_id}", status_code=204)
def delete_item(item_id: str, request: Request):
    """Remove a closet item."""
    if not request.app.state.closet.remove(item_id):
        raise HTTPException(status_code=404, detail=f"Item {item_id} not found")


def create_app(service_factory: Optional[Callable[[], TaggingService]] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        service_factory: Builds the TaggingService at startup.  Defaults to
                         wiring the engine selected in the global config.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler: builds the tagging service and closet
        on startup, and releases the model on shutdown.
        """
        logger.info("Starting server, wiring tagging service...")
        factory = service_factory or (lambda: build_tagging_service(get_config()))
        app.state.tagging_service = factory()
        app.state.closet = ClosetStore()
        app.state.active_tokens = set()
        app.state.token_lock = threading.Lock()
        app.state.start_time = time.time()

        logger.info("Server ready, accepting requests.")
        yield

        logger.info("Shutting down server...")
        app.state.tagging_service.reset()

    app = FastAPI(
        title="Closet Tagger VLM Server",
        description=(
            "Tags clothing photos with a local vision-language model "
            "(llama.cpp GGUF or HuggingFace transformers) and keeps the "
            "tagged items in an in-memory closet."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()
