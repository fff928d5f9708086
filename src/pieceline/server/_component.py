# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""Component ABC for composable server pieces."""

import abc

from fastapi import APIRouter


class Component(abc.ABC):
    """A router plus the resources behind it.

    :class:`Server` starts components in order from its lifespan and stops
    them in reverse.
    """

    name: str = "component"

    @abc.abstractmethod
    def router(self) -> APIRouter: ...

    async def start(self) -> None:
        """Acquire resources.  Default: nothing to acquire."""

    async def stop(self) -> None:
        """Release resources.  Default: nothing to release."""
