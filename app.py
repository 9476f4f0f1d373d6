from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from routers.rooms import rooms_router
from backend import redis_backend
from connections import Connection, ConnectionRegistry
from constants import CORS_ORIGINS
from errors import StoreUnavailable
from events import EventRouter
import uuid
from logging_config import get_logger, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)

# One process owns the connection registry for every room it serves
registry = ConnectionRegistry()
event_router = EventRouter(redis_backend, registry)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await redis_backend.ping()
        logger.info("Room store reachable")
    except StoreUnavailable as e:
        # Events will fail individually until the store comes back
        logger.error(f"Room store not reachable at startup: {e}")
    yield
    await redis_backend.close()
    logger.info("Room store connection closed")


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)

logger.info("FastAPI application initialized")


@app.get("/")
async def health():
    return {"status": "ok", "connections": len(registry.connections)}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Room event channel: one WebSocket per client, multiplexed by room membership."""
    await websocket.accept()
    connection_id = str(uuid.uuid4())
    registry.register(connection_id, websocket)
    conn = Connection(connection_id=connection_id, registry=registry)
    logger.info(f"WebSocket connection accepted: {connection_id}")

    try:
        await conn.emit("connected", {"connectionId": connection_id})
        message_count = 0
        while True:
            data = await websocket.receive_text()
            message_count += 1
            logger.debug(f"Received message #{message_count} from connection {connection_id}")
            await event_router.handle(conn, data)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
    finally:
        await event_router.disconnect(conn)
        logger.info(f"Connection {connection_id} cleaned up")
