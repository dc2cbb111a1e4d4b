from fastapi import APIRouter, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional
import uuid
import json

from routers.rooms import rooms_router
from backend import RedisBackend
from constants import CORS_ORIGINS, LOG_LEVEL, LOG_FILE
from relay.service import ChatRelay, error_event
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)

chat_router = APIRouter()


@chat_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """One chat session. Frames are JSON objects with a `type` naming the event:

    - join-room: {roomId, userName}
    - leave-room: {}
    - send-message: {content, kind, duration}
    - create-room: {userName}
    - get-active-rooms: {}
    """
    relay: ChatRelay = websocket.app.state.relay
    connection_id = str(uuid.uuid4())

    await websocket.accept()
    relay.connect(connection_id, websocket)
    relay.dispatcher.send(connection_id, {"type": "connected", "connectionId": connection_id})

    try:
        message_count = 0
        while True:
            data = await websocket.receive_text()
            message_count += 1
            logger.debug(f"Received frame #{message_count} from connection {connection_id}")

            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                relay.dispatcher.send(connection_id, error_event("invalid-payload", "Frames must be JSON objects"))
                continue
            if not isinstance(frame, dict):
                relay.dispatcher.send(connection_id, error_event("invalid-payload", "Frames must be JSON objects"))
                continue

            await relay.handle_event(connection_id, frame)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
    finally:
        await relay.disconnect(connection_id)
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")


@chat_router.get("/health")
async def health(request: Request):
    relay: ChatRelay = request.app.state.relay
    storage_ok = await relay.backend.ping()
    return {
        "status": "OK",
        "users": relay.connection_count(),
        "rooms": relay.room_count(),
        "storage": "ok" if storage_ok else "unavailable",
    }


def create_app(backend: Optional[RedisBackend] = None) -> FastAPI:
    backend = backend or RedisBackend()
    relay = ChatRelay(backend)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if await backend.ping():
            logger.info("Redis message store reachable")
        else:
            logger.warning("Redis message store unreachable, messages will be delivered but not stored")
        yield
        logger.info("Shutting down, flushing pending message writes")
        await relay.shutdown()
        await backend.close()

    app = FastAPI(lifespan=lifespan)
    app.state.relay = relay

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)
    app.include_router(rooms_router)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
