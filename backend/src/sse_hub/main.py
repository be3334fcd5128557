import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from logging.config import dictConfig
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request, Response
import uvicorn
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from starlette.requests import ClientDisconnect

from .config import Settings, get_settings
from .exceptions import AlreadySubscribed, SerializationFailure
from .models import Broker
from .schemas import Message
from .server import HubServer
from .streaming import EventStreamResponse, StreamSession
from .utilities import IdGenerator, ensure_client_id, get_client_id, set_client_cookie

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    # nginx would otherwise buffer the stream
    "X-Accel-Buffering": "no",
}

router = APIRouter()


def configure_logging(level: str = "info"):
    level = level.upper()
    dictConfig({
        "version": 1,
        "disable_existing_loggers": False,     # keep uvicorn loggers
        "formatters": {
            "plain": {"format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "plain"},
        },
        "loggers": {
            "": {"handlers": ["console"], "level": level},
            "uvicorn": {"handlers": ["console"], "level": level, "propagate": False},
            "uvicorn.error": {"handlers": ["console"], "level": level, "propagate": False},
            "uvicorn.access": {"handlers": ["console"], "level": level, "propagate": False},
        },
    })


# -------------- SSE handling --------------

@router.get("/events/subscribe")
async def subscribe(request: Request):
    # HTTP/1.0 has no chunked encoding, so the response could never be flushed incrementally
    if request.scope.get("http_version") == "1.0":
        raise HTTPException(status_code=400, detail="SSE unavailable")

    state = request.app.state
    settings: Settings = state.settings
    client_id, is_new = ensure_client_id(request, state.id_generator, settings.client_id_cookie)

    session = StreamSession(
        state.broker,
        client_id,
        is_disconnected=request.is_disconnected,
        heartbeat_interval=settings.heartbeat_interval,
    )
    try:
        await session.open()
    except AlreadySubscribed:
        logger.warning("client[%s] tried to open a second stream", client_id)
        raise HTTPException(status_code=409, detail="client already subscribed")

    response = EventStreamResponse(session, headers=SSE_HEADERS)
    if is_new:
        set_client_cookie(response, client_id, settings.client_id_cookie)
    return response


# -------------- REST endpoints --------------

@router.post("/events/publish")
async def publish(request: Request):
    state = request.app.state
    broker: Broker = state.broker

    # the cookie is the only identity check, it is not tied to the stream that registered it
    client_id = get_client_id(request, state.settings.client_id_cookie)
    if client_id is None or not await broker.is_connected(client_id):
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        body = await request.body()
    except ClientDisconnect:
        logger.info("client[%s] went away while sending a message", client_id)
        raise HTTPException(status_code=400, detail="Bad Request")

    try:
        msg = Message.model_validate_json(body)
    except ValidationError as exc:
        logger.info("rejected message from client[%s]: %s", client_id, exc.errors(include_url=False))
        raise HTTPException(status_code=400, detail="Bad Request")

    try:
        await broker.publish(msg)
    except SerializationFailure:
        raise HTTPException(status_code=500, detail="message could not be serialized")
    return Response(status_code=200)


@router.get("/health")
async def rest_health(request: Request):
    now = datetime.now(timezone.utc)
    uptime_sec = int((now - request.app.state.started_at).total_seconds())
    stats = await request.app.state.broker.stats()
    return {"uptime_sec": uptime_sec, "subscribers": stats["subscribers"]}


@router.get("/stats")
async def rest_stats(request: Request):
    return await request.app.state.broker.stats()


def create_app(settings: Optional[Settings] = None,
               broker: Optional[Broker] = None,
               id_generator: Optional[IdGenerator] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    broker = broker or Broker(settings.history_size, settings.subscriber_queue_size)
    id_generator = id_generator or IdGenerator(settings.client_id_length, seed=settings.id_seed)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("sse hub ready, history=%d queue=%d",
                    broker.history.capacity, broker.queue_size)
        yield
        # streams are normally closed already by HubServer.handle_exit
        await broker.close_all()

    app = FastAPI(title="In-memory SSE Pub/Sub", lifespan=lifespan)
    app.state.settings = settings
    app.state.broker = broker
    app.state.id_generator = id_generator
    app.state.started_at = datetime.now(timezone.utc)
    app.include_router(router)

    # demo client assets
    if settings.static_dir:
        static_dir = Path(settings.static_dir)
        if static_dir.is_dir():
            app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
        else:
            logger.warning("static dir %s does not exist, not serving assets", static_dir)

    return app


def run():
    settings = get_settings()
    app = create_app(settings)
    config = uvicorn.Config(app, host=settings.http_host, port=settings.http_port, log_config=None)
    HubServer(config, app.state.broker).run()


if __name__ == "__main__":
    run()
