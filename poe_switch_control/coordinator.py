"""Keep-alive coordinator deciding when PoE devices are powered.

Paging activity turns eligible devices on right away. Turning them off is
deferred by a keep-alive countdown so that a burst of paging events does
not make the hardware flap.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
from typing import TYPE_CHECKING

from .api import PoESwitchError
from .models import (
    DeviceLinkage,
    DeviceMode,
    DeviceToggleRequest,
    KeepAliveSettings,
    KeepAliveState,
    ToggleMode,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from .orchestrator import ToggleOrchestrator

_LOGGER = logging.getLogger(__name__)


def _format_remaining(seconds: int) -> str:
    minutes, secs = divmod(seconds, 60)
    return f"{minutes}:{secs:02d}"


class Countdown:
    """Cancellable countdown that ticks every interval and then expires.

    ``cancel`` may be called any number of times, also after the countdown
    expired. Once expired, the expiry action runs to completion even if
    ``cancel`` is called meanwhile.
    """

    def __init__(
        self,
        seconds: int,
        interval: float,
        on_tick: Callable[[int], None],
        on_expire: Callable[[], Awaitable[None]],
    ) -> None:
        self._remaining = seconds
        self._interval = interval
        self._on_tick = on_tick
        self._on_expire = on_expire
        self._expired = False
        self._task: asyncio.Task[None] | None = None

    @property
    def remaining(self) -> int:
        """Return the whole seconds left."""
        return self._remaining

    @property
    def pending(self) -> bool:
        """Return True while the countdown can still be cancelled."""
        return (
            self._task is not None and not self._expired and not self._task.done()
        )

    def start(self) -> None:
        """Start ticking on the running event loop."""
        self._task = asyncio.create_task(self._run())

    def cancel(self) -> None:
        """Stop the countdown before it expires."""
        if self.pending:
            self._task.cancel()

    async def wait(self) -> None:
        """Wait until the countdown expired and its action finished, or was cancelled."""
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def _run(self) -> None:
        while self._remaining > 0:
            await asyncio.sleep(self._interval)
            self._remaining -= 1
            self._on_tick(self._remaining)
        self._expired = True
        await self._on_expire()


class KeepAliveCoordinator:
    """State machine switching eligible PoE devices on and off.

    A device is eligible when it is in auto mode, the operator has not
    excluded it, and at least one of its linked paging devices is active.
    """

    def __init__(
        self,
        orchestrator: ToggleOrchestrator,
        get_linkages: Callable[[], Iterable[DeviceLinkage]],
        get_active_paging_ids: Callable[[], Iterable[str]],
        settings: KeepAliveSettings | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            orchestrator: Used for every hardware action.
            get_linkages: Returns the current PoE device inventory.
            get_active_paging_ids: Returns the ids of the paging devices
                currently selected.
            settings: Keep-alive duration, toggle mode and simulation flag.

        """
        self._orchestrator = orchestrator
        self._get_linkages = get_linkages
        self._get_active_paging_ids = get_active_paging_ids
        self.settings = settings or KeepAliveSettings()

        self._is_on = False
        self._excluded: set[str] = set()
        self._countdown: Countdown | None = None
        self._countdown_callbacks: list[Callable[[int], None]] = []

    @property
    def is_on(self) -> bool:
        """Return True if eligible devices are meant to be powered."""
        return self._is_on

    @property
    def countdown(self) -> Countdown | None:
        """Return the pending off countdown, if any."""
        if self._countdown is not None and self._countdown.pending:
            return self._countdown
        return None

    @property
    def state(self) -> KeepAliveState:
        """Return a snapshot of the keep-alive state."""
        countdown = self.countdown
        return KeepAliveState(
            is_on=self._is_on,
            countdown_remaining=countdown.remaining if countdown else None,
            excluded_device_ids=frozenset(self._excluded),
        )

    def register_countdown_callback(
        self,
        callback: Callable[[int], None],
    ) -> Callable[[], None]:
        """Register a callback for countdown ticks.

        Args:
            callback: Called once per tick with the seconds remaining.

        Returns:
            A function to unregister the callback.

        """
        self._countdown_callbacks.append(callback)

        def unregister() -> None:
            if callback in self._countdown_callbacks:
                self._countdown_callbacks.remove(callback)

        return unregister

    def set_excluded(self, device_id: str, excluded: bool) -> None:
        """Take a device out of (or back into) automatic control."""
        if excluded:
            self._excluded.add(device_id)
        else:
            self._excluded.discard(device_id)

    def set_all_excluded(self, excluded: bool) -> None:
        """Exclude every auto-mode device, or clear all exclusions."""
        if excluded:
            self._excluded = {
                linkage.device_id
                for linkage in self._get_linkages()
                if linkage.mode == DeviceMode.AUTO
            }
        else:
            self._excluded = set()

    def is_excluded(self, device_id: str) -> bool:
        """Check if the operator excluded a device from automatic control."""
        return device_id in self._excluded

    def _has_controllable_devices(self) -> bool:
        return any(
            linkage.mode == DeviceMode.AUTO and linkage.device_id not in self._excluded
            for linkage in self._get_linkages()
        )

    def _linked_devices(self, *, honor_exclusions: bool) -> list[DeviceLinkage]:
        active = set(self._get_active_paging_ids())
        return [
            linkage
            for linkage in self._get_linkages()
            if linkage.mode == DeviceMode.AUTO
            and not (honor_exclusions and linkage.device_id in self._excluded)
            and not active.isdisjoint(linkage.linked_paging_device_ids)
        ]

    def eligible_devices(self) -> list[DeviceLinkage]:
        """Return the devices automatic control applies to right now."""
        return self._linked_devices(honor_exclusions=True)

    def _cancel_countdown(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
            self._countdown = None

    async def async_enable(self) -> None:
        """Power eligible devices on, or keep them on if they already are."""
        if self.settings.simulation:
            _LOGGER.info("Simulation: enabling PoE devices")
            return

        if not self._has_controllable_devices():
            return

        self._cancel_countdown()

        if self._is_on:
            _LOGGER.info("PoE already ON, timer reset")
            return

        self._is_on = True
        await self._async_send(True, self.eligible_devices())

    async def async_disable(self, force: bool = False) -> None:
        """Power eligible devices off after the keep-alive duration.

        Args:
            force: Power off right away, including devices the operator
                excluded. Used when monitoring stops and in emergencies.

        """
        if self.settings.simulation:
            _LOGGER.info("Simulation: disabling PoE devices")
            return

        if not force and not self._has_controllable_devices():
            return

        self._cancel_countdown()

        if force:
            self._is_on = False
            targets = self._linked_devices(honor_exclusions=False)
            if targets:
                _LOGGER.info("PoE FORCE OFF for %d device(s)", len(targets))
                await self._async_send(
                    False, targets, mode=ToggleMode.SEQUENTIAL, inter_delay=0.0
                )
            return

        seconds = math.ceil(self.settings.keep_alive_duration)
        _LOGGER.info("PoE will turn OFF in %s", _format_remaining(seconds))
        self._countdown = Countdown(
            seconds,
            self.settings.tick_interval,
            self._handle_tick,
            self._async_countdown_expired,
        )
        self._countdown.start()

    def _handle_tick(self, remaining: int) -> None:
        _LOGGER.debug("PoE OFF in %s", _format_remaining(remaining))
        for callback in self._countdown_callbacks:
            try:
                callback(remaining)
            except Exception:
                _LOGGER.exception("Error in countdown callback")

    async def _async_countdown_expired(self) -> None:
        _LOGGER.info("Keep-alive expired, turning PoE OFF")
        if not self._is_on:
            return
        # Off even if the toggle fails; the hardware state is best effort now
        self._is_on = False
        try:
            devices = self.eligible_devices()
        except Exception:
            _LOGGER.exception("Error reading PoE devices at keep-alive expiry")
            return
        await self._async_send(False, devices)

    async def _async_send(
        self,
        enabled: bool,
        devices: list[DeviceLinkage],
        *,
        mode: ToggleMode | None = None,
        inter_delay: float | None = None,
    ) -> None:
        if not devices:
            return

        _LOGGER.info("PoE %s: %s", "ON" if enabled else "OFF", _device_names(devices))
        requests = [DeviceToggleRequest(linkage.device_id, enabled) for linkage in devices]
        try:
            results = await self._orchestrator.async_toggle_bulk(
                requests,
                mode=mode if mode is not None else self.settings.toggle_mode,
                inter_delay=(
                    inter_delay if inter_delay is not None else self.settings.toggle_delay
                ),
            )
        except PoESwitchError as err:
            _LOGGER.warning("PoE toggle error: %s", err)
            return
        except Exception:
            _LOGGER.exception("Unexpected error toggling PoE devices")
            return

        failed = [result for result in results if not result.success]
        if failed:
            _LOGGER.warning("PoE: %d device(s) failed", len(failed))

    async def async_shutdown(self) -> None:
        """Cancel any pending countdown."""
        self._cancel_countdown()


def _device_names(devices: Iterable[DeviceLinkage]) -> str:
    return ", ".join(linkage.device_id for linkage in devices)
