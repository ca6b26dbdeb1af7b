"""StatusListener: Read-only HTTP view of every network's voting state."""

from __future__ import annotations

import logging
from typing import Mapping

import uvicorn
from fastapi import FastAPI, HTTPException

from . import __version__
from .VoteStateMachine import NetworkState

logger = logging.getLogger(__name__)


def create_app(states: Mapping[str, NetworkState]) -> FastAPI:
    """Build the status app.

    Handlers are coroutines so snapshots are taken on the event loop that
    owns the states, never from a worker thread.

    :param states: Network id to live NetworkState; read, never mutated.
    :returns: FastAPI application.
    """
    app = FastAPI(title="oracle-feeder", version=__version__)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/status")
    async def status():
        return {network_id: state.snapshot() for network_id, state in states.items()}

    @app.get("/status/{network_id}")
    async def network_status(network_id: str):
        state = states.get(network_id)
        if state is None:
            raise HTTPException(status_code=404, detail=f"Unknown network '{network_id}'")
        return state.snapshot()

    return app


async def serve(states: Mapping[str, NetworkState], host: str, port: int) -> None:
    """Serve the status app inside the running event loop."""
    config = uvicorn.Config(
        create_app(states), host=host, port=port, log_level="warning"
    )
    server = uvicorn.Server(config)
    logger.info(f"Status listener on http://{host}:{port}")
    await server.serve()
