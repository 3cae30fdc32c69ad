# src/duet_chat/main.py
"""Main entry point for the Duet hub."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from duet_chat import __version__
from duet_chat.api import websocket_router
from duet_chat.core.settings import configure_logging, settings
from duet_chat.db.session import SessionLocal, create_tables
from duet_chat.services.hub import Hub, build_hub

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Relay and history store for end-to-end encrypted pairwise chat",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

app.include_router(websocket_router)


@app.on_event("startup")
async def on_startup() -> None:
    configure_logging()
    session_factory = getattr(app.state, "session_factory", None)
    if session_factory is None:
        create_tables()
        session_factory = SessionLocal
    hub = build_hub(session_factory, settings)
    await hub.start()
    app.state.hub = hub


@app.on_event("shutdown")
async def on_shutdown() -> None:
    hub: Hub | None = getattr(app.state, "hub", None)
    if hub:
        await hub.stop()
    app.state.hub = None


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the hub is running."""
    hub: Hub | None = getattr(app.state, "hub", None)
    return {"status": "ok" if hub is not None and hub.running else "starting"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the hub."""
    return {
        "name": settings.app_name,
        "version": __version__,
        "description": "Relay and history store for end-to-end encrypted pairwise chat",
        "websocket": "/ws/",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "duet_chat.main:app",
        host=settings.hub_host,
        port=settings.hub_port,
        reload=settings.debug,
        ws_ping_interval=settings.ws_ping_interval,
        ws_ping_timeout=settings.ws_ping_timeout,
    )
