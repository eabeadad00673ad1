"""Registry of switch controllers, one per switch type and address."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .api import UnsupportedSwitchTypeError, create_session_client
from .const import SWITCH_TYPE_NETGEAR_GS308EP
from .controller import NetgearGS308EPController

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    import httpx

    from .models import SwitchCredentials

    ControllerFactory = Callable[
        [SwitchCredentials, httpx.AsyncClient], NetgearGS308EPController
    ]

_LOGGER = logging.getLogger(__name__)

SWITCH_CONTROLLERS: dict[str, ControllerFactory] = {
    SWITCH_TYPE_NETGEAR_GS308EP: NetgearGS308EPController,
}


class ControllerRegistry:
    """Cache of switch controllers so every caller shares one session per switch."""

    def __init__(
        self,
        session: httpx.AsyncClient | None = None,
        factories: Mapping[str, ControllerFactory] | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            session: HTTP client shared by all controllers. One is created
                (and later closed by ``async_close``) when omitted.
            factories: Controller constructors keyed by switch type.

        """
        self._owns_session = session is None
        self._session = session if session is not None else create_session_client()
        self._factories = dict(factories or SWITCH_CONTROLLERS)
        self._controllers: dict[tuple[str, str], NetgearGS308EPController] = {}

    def __len__(self) -> int:
        return len(self._controllers)

    def get_or_create(
        self,
        switch_type: str,
        credentials: SwitchCredentials,
    ) -> NetgearGS308EPController:
        """Return the controller for a switch, creating it on first use.

        An existing controller is handed the credentials so a password change
        takes effect on its next login.

        Raises:
            UnsupportedSwitchTypeError: If no controller handles the type.

        """
        key = (switch_type, credentials.ip_address)
        controller = self._controllers.get(key)
        if controller is not None:
            controller.update_credentials(credentials)
            return controller

        factory = self._factories.get(switch_type)
        if factory is None:
            msg = f"Unsupported PoE switch type: {switch_type}"
            raise UnsupportedSwitchTypeError(msg)

        _LOGGER.debug("Creating %s controller for %s", switch_type, credentials.ip_address)
        controller = factory(credentials, self._session)
        self._controllers[key] = controller
        return controller

    async def async_clear_all(self) -> None:
        """Log out of every switch. Failures are logged, never raised."""
        controllers = list(self._controllers.values())
        results = await asyncio.gather(
            *(controller.async_clear_session() for controller in controllers),
            return_exceptions=True,
        )
        for controller, result in zip(controllers, results, strict=True):
            if isinstance(result, Exception):
                _LOGGER.warning(
                    "Failed to clear session for %s: %s", controller.ip_address, result
                )

    async def async_close(self) -> None:
        """Clear all sessions and release the HTTP client."""
        await self.async_clear_all()
        self._controllers.clear()
        if self._owns_session:
            await self._session.aclose()
