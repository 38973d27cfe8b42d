"""
Godot Bridge Server

Wires the bridge together and serves it over one of two transports:
1. MCP over stdio (default) for AI-agent hosts
2. HTTP (FastAPI + uvicorn) for tooling, scripts and status dashboards

Architecture:
┌──────────────────────────────────────────────────────────────┐
│  MCP stdio  /  HTTP (/tools/call, /catalog/search, /status)  │
├──────────────────────────────────────────────────────────────┤
│                        ProfileRouter                         │
│     registry + catalog  ──  validate  ──  resource locks     │
├──────────────────────────────────────────────────────────────┤
│                    ConnectionSupervisor                      │
│       (states, reconnect backoff)  ◄──  HeartbeatMonitor     │
├──────────────┬──────────────┬──────────────┬─────────────────┤
│ ProcessChan. │ RuntimeChan. │  LspChannel  │   DapChannel    │
│ godot --head │  tcp :6505   │  tcp :6005   │   tcp :6006     │
└──────────────┴──────────────┴──────────────┴─────────────────┘
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .godot import (
    BackendKind,
    BackendChannel,
    Config,
    ConnectionSupervisor,
    DapChannel,
    Event,
    HeartbeatMonitor,
    LspChannel,
    ProcessChannel,
    ProfileRouter,
    RuntimeChannel,
    setup_logging,
)
from .godot.http_routes import router as tools_router, init_bridge_routes
from .godot_tools import CatalogIndex, ToolRegistry, build_registry
from . import __version__


logger = logging.getLogger("godot_bridge")


# =============================================================================
# Component Wiring
# =============================================================================

@dataclass
class Bridge:
    """Every long-lived component of one server process."""
    config: Config
    registry: ToolRegistry
    catalog: CatalogIndex
    supervisor: ConnectionSupervisor
    heartbeat: HeartbeatMonitor
    router: ProfileRouter

    async def start(self) -> None:
        await self.supervisor.start()
        self.heartbeat.start()

    async def stop(self) -> None:
        self.heartbeat.stop()
        await self.supervisor.shutdown()


async def handle_backend_event(kind: BackendKind, event: Event) -> None:
    """Log unsolicited backend events (readiness, breakpoints, ...)."""
    if kind is BackendKind.DAP and event.name == "output":
        return
    logger.debug(f"{kind.value} event: {event.name}")


def default_channels(config: Config) -> list[BackendChannel]:
    return [
        ProcessChannel(config.process),
        RuntimeChannel(config.endpoints),
        LspChannel(config.endpoints, config.process.project_path),
        DapChannel(config.endpoints, config.process.project_path),
    ]


def build_bridge(config: Config, channels: Optional[Iterable[BackendChannel]] = None) -> Bridge:
    """
    Build the component graph.

    Args:
        config: Complete application configuration
        channels: Backend channels (defaults to the four real ones)

    Returns:
        Unstarted Bridge
    """
    registry = build_registry()
    catalog = CatalogIndex(registry)
    supervisor = ConnectionSupervisor(
        default_channels(config) if channels is None else channels,
        config.reconnect,
    )
    supervisor.subscribe(handle_backend_event)
    heartbeat = HeartbeatMonitor(supervisor, config.heartbeat)
    router = ProfileRouter(registry, catalog, supervisor, config.bridge)
    return Bridge(config, registry, catalog, supervisor, heartbeat, router)


# =============================================================================
# FastAPI Application
# =============================================================================

def create_app(bridge: Bridge) -> FastAPI:
    """Create the HTTP application around a bridge."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - startup and shutdown."""
        await bridge.start()
        init_bridge_routes(bridge.router)
        logger.info(
            f"HTTP API ready on http://{bridge.config.server.host}:{bridge.config.server.port} "
            f"(profile: {bridge.router.profile.value})"
        )

        yield

        logger.info("Shutting down...")
        init_bridge_routes(None)
        await bridge.stop()
        logger.info("Goodbye! 👋")

    app = FastAPI(
        title="Godot Bridge",
        description="Tool router between AI agents and the Godot engine",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(bridge.config.server.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(tools_router)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        states = {kind.value: snap.state.value for kind, snap in bridge.supervisor.snapshots().items()}
        return {
            "status": "healthy" if not bridge.supervisor.closed else "stopping",
            "backends": states,
        }

    @app.get("/status")
    async def status():
        """Detailed status endpoint."""
        return {
            "status": "running",
            "version": __version__,
            "profile": bridge.router.profile.value,
            "transport": bridge.config.bridge.transport,
            "tools": len(bridge.registry),
            "backends": bridge.supervisor.status(),
            "heartbeat": {"suspended": bridge.heartbeat.is_suspended()},
            "resource_locks": len(bridge.router.resource_locks),
        }

    return app


# =============================================================================
# Main Entry Point
# =============================================================================

async def run_stdio(bridge: Bridge) -> None:
    """Serve MCP on stdio for the lifetime of the client."""
    from .mcp_server import run_stdio as serve_mcp

    await bridge.start()
    try:
        await serve_mcp(bridge.router)
    finally:
        await bridge.stop()


def main() -> None:
    """Console entry point. Configuration is read from the environment only."""
    try:
        config = Config.from_env()
    except ValueError as e:
        setup_logging()
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    setup_logging(getattr(logging, config.server.log_level, logging.INFO))
    bridge = build_bridge(config)

    if config.bridge.transport == "http":
        import uvicorn

        uvicorn.run(
            create_app(bridge),
            host=config.server.host,
            port=config.server.port,
            log_level="warning",  # Reduce Uvicorn noise, our logger handles it
            access_log=False,
        )
    else:
        asyncio.run(run_stdio(bridge))


if __name__ == "__main__":
    main()
