import structlog
from fastapi import APIRouter, WebSocket

from call_console.services.connection_manager import ConnectionManager

router = APIRouter()
logger = structlog.get_logger()


@router.websocket("/")
@router.websocket("/tnt")
async def console_ws(websocket: WebSocket):
    manager: ConnectionManager = websocket.app.state.connections
    connection = await manager.connect(websocket)
    structlog.contextvars.bind_contextvars(session_id=connection.session_id)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(
                    "ws_client_closed",
                    session_id=connection.session_id,
                    code=message.get("code"),
                )
                return
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue
            manager.dispatch(connection, raw)
    except Exception as exc:
        logger.error(
            "ws_transport_error",
            session_id=connection.session_id,
            error=str(exc) or type(exc).__name__,
        )
    finally:
        structlog.contextvars.unbind_contextvars("session_id")
        await manager.disconnect(websocket)
