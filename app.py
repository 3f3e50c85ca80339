from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend import RedisBackend
from chat_service import ChatService
from constants import LOG_FILE, LOG_LEVEL, STORE_BACKEND
from exceptions import ConcurrentUpdate, PreconditionConflict, StoreUnavailable
from logging_config import get_logger, setup_logging
from memory_backend import InMemoryBackend
from relay import BroadcastRelay
from routers.chat import chat_router
from state import ChatState
from viewers import ViewerRegistry

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_store(backend: str = STORE_BACKEND):
    if backend == "memory":
        return InMemoryBackend()
    if backend == "redis":
        return RedisBackend()
    raise ValueError(f"Unknown STORE_BACKEND {backend!r}, expected 'redis' or 'memory'")


def create_app(store=None) -> FastAPI:
    """Build the application. A store passed in is used as-is and not closed on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = store is None
        chat_store = create_store() if owned else store
        chat_store.ping()

        state = ChatState(chat_store)
        state.load()
        viewers = ViewerRegistry()
        relay = BroadcastRelay(chat_store, viewers)

        app.state.store = chat_store
        app.state.chat_state = state
        app.state.chat_service = ChatService(state, chat_store)
        app.state.viewers = viewers
        app.state.relay = relay

        relay.start()
        logger.info("Chat relay application started")
        try:
            yield
        finally:
            await relay.stop()
            if owned:
                chat_store.close()
            logger.info("Chat relay application stopped")

    app = FastAPI(lifespan=lifespan)

    # Configure CORS to allow all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)

    @app.exception_handler(PreconditionConflict)
    async def precondition_conflict_handler(request: Request, exc: PreconditionConflict):
        return JSONResponse(status_code=403, content={"detail": exc.detail})

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=503, content={"detail": "Store unavailable, please retry"})

    @app.exception_handler(ConcurrentUpdate)
    async def concurrent_update_handler(request: Request, exc: ConcurrentUpdate):
        logger.warning(f"{request.method} {request.url.path} lost to concurrent updates: {exc}")
        return JSONResponse(status_code=409, content={"detail": "Concurrent update, please retry"})

    @app.websocket("/ws")
    async def viewer_endpoint(websocket: WebSocket):
        """Live-update stream. Viewers only receive; anything they send is ignored."""
        viewers: ViewerRegistry = websocket.app.state.viewers
        await websocket.accept()
        connection_id = viewers.add(websocket)
        client_host = websocket.client.host if websocket.client else "unknown"
        logger.info(f"Viewer {connection_id} connected from {client_host}")
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info(f"Viewer {connection_id} disconnected")
        finally:
            viewers.remove(connection_id)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
