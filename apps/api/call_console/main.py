from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from call_console.config import settings
from call_console.logging_config import setup_logging
from call_console.routers import health, ws
from call_console.services.call_session import SessionTimings
from call_console.services.connection_manager import ConnectionManager
from call_console.services.interaction_sink import InteractionSink
from call_console.services.playback import load_script

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.environment)
    sink = InteractionSink(settings.interaction_log_path)
    sink.start()
    app.state.sink = sink
    app.state.connections = ConnectionManager(
        sink,
        script=load_script(settings.script_path),
        timings=SessionTimings.from_settings(settings),
    )
    logger.info(
        "call_console_starting",
        environment=settings.environment,
        port=settings.port,
        interaction_log=settings.interaction_log_path,
    )
    yield
    await app.state.connections.close_all()
    await sink.stop()
    logger.info("call_console_shutting_down")


app = FastAPI(
    title="Call Console API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(ws.router)


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
