# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""Mount components on one FastAPI app and tie their start/stop to its lifespan."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from ._component import Component

logger = logging.getLogger(__name__)


class Server:
    """One FastAPI application built from a set of components.

    Usage::

        Server(LLM(SubprocessBackend(["engine"]))).run()
        Server(LLM(backend), Embeddings("encoder.onnx", "tokenizer.model")).run()

    Component names must be unique.  Components start in the order given and
    stop in reverse; a component that failed to start is not stopped.
    """

    def __init__(self, *components: Component):
        if not components:
            raise ValueError("Server requires at least one component")

        by_name: dict[str, Component] = {}
        for component in components:
            if component.name in by_name:
                raise ValueError(f"Duplicate component: {component.name!r}")
            by_name[component.name] = component

        self._components = tuple(components)
        self._app: FastAPI | None = None

    @property
    def components(self) -> tuple[Component, ...]:
        return self._components

    @property
    def app(self) -> FastAPI:
        """The FastAPI app, built on first access so callers can add routes."""
        if self._app is None:
            app = FastAPI(title="Pieceline API", version="0.1.0", lifespan=self._lifespan)
            for component in self._components:
                app.include_router(component.router())
            self._app = app
        return self._app

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        running: list[Component] = []
        try:
            for component in self._components:
                await component.start()
                running.append(component)
                logger.info("Started %s", component.name)
            yield
        finally:
            while running:
                component = running.pop()
                await component.stop()
                logger.info("Stopped %s", component.name)

    def run(self, host: str = "127.0.0.1", port: int = 8000, **kwargs) -> None:
        """Serve with uvicorn until interrupted."""
        names = ", ".join(c.name for c in self._components)
        logger.info("Serving %s on %s:%d", names, host, port)
        uvicorn.run(self.app, host=host, port=port, **kwargs)
