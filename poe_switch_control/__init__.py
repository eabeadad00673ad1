"""Power PoE devices through a switch's web interface in step with paging."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .coordinator import KeepAliveCoordinator
from .orchestrator import ToggleOrchestrator
from .registry import ControllerRegistry

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    import httpx

    from .models import DeviceLinkage, KeepAliveSettings
    from .orchestrator import DeviceResolver

_LOGGER = logging.getLogger(__name__)


@dataclass
class PoEControl:
    """The wired-up components for one monitoring session."""

    registry: ControllerRegistry
    orchestrator: ToggleOrchestrator
    coordinator: KeepAliveCoordinator


def create_poe_control(
    resolver: DeviceResolver,
    get_linkages: Callable[[], Iterable[DeviceLinkage]],
    get_active_paging_ids: Callable[[], Iterable[str]],
    settings: KeepAliveSettings | None = None,
    session: httpx.AsyncClient | None = None,
) -> PoEControl:
    """Build the registry, orchestrator and keep-alive coordinator.

    Args:
        resolver: Async lookup of a device's switch and port.
        get_linkages: Returns the PoE device inventory.
        get_active_paging_ids: Returns the currently active paging devices.
        settings: Keep-alive settings.
        session: Optional HTTP client to share with the switches.

    Returns:
        PoEControl holding the three components.

    """
    registry = ControllerRegistry(session)
    orchestrator = ToggleOrchestrator(registry, resolver)
    coordinator = KeepAliveCoordinator(
        orchestrator, get_linkages, get_active_paging_ids, settings
    )
    return PoEControl(registry, orchestrator, coordinator)


async def async_start_monitoring(control: PoEControl) -> None:
    """Make sure every eligible device starts out powered off."""
    _LOGGER.info("Starting PoE monitoring")
    await control.coordinator.async_disable(force=True)


async def async_stop_monitoring(control: PoEControl) -> None:
    """Power eligible devices off and log out of every switch."""
    _LOGGER.info("Stopping PoE monitoring")
    await control.coordinator.async_disable(force=True)
    await control.coordinator.async_shutdown()
    await control.registry.async_clear_all()
