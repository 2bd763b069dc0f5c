import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

from fastapi import Depends, FastAPI

from coach_messaging.database import close_db, init_db, ping_db
from coach_messaging.dependencies import get_channel
from coach_messaging.realtime import RealtimeChannel, build_channel
from coach_messaging.routers.conversations import router as conversations_router
from coach_messaging.routers.messages import router as messages_router
from coach_messaging.routers.participants import router as participants_router
from coach_messaging.settings import S

logging.basicConfig(
    level=S.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown."""
    # Startup
    await init_db()
    channel = build_channel(S.redis_url)
    await channel.start()
    app.state.channel = channel
    logger.info(
        "Messaging service started (env=%s, realtime=%s)",
        S.env,
        type(channel).__name__,
    )
    yield
    # Shutdown
    await channel.close()
    await close_db()


app = FastAPI(
    title="Coach Messaging Service",
    description="Client and coach conversations with realtime delivery",
    version=S.commit_hash or "dev",
    lifespan=lifespan,
)

# Include routers
app.include_router(
    conversations_router, prefix="/api/conversations", tags=["conversations"]
)
app.include_router(messages_router, prefix="/api/conversations", tags=["messages"])
app.include_router(
    participants_router, prefix="/api/participants", tags=["participants"]
)


@app.get("/health")
async def health_check(
    channel: RealtimeChannel = Depends(get_channel),
) -> Dict[str, Optional[str]]:
    """Health check endpoint with database and realtime connectivity."""
    db_status = "connected" if await ping_db() else "disconnected"
    realtime_status = "connected" if await channel.ping() else "disconnected"

    healthy = db_status == "connected" and realtime_status == "connected"
    return {
        "status": "healthy" if healthy else "degraded",
        "database": db_status,
        "realtime": realtime_status,
        "environment": S.env,
        "version": S.commit_hash,
    }


# If run directly, start the server
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=S.host, port=S.port)
