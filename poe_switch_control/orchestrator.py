"""Turn device toggle requests into per-switch port operations."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .api import PoESwitchError, is_valid_port
from .models import (
    DeviceToggleRequest,
    DeviceToggleResult,
    PortCommand,
    SwitchTarget,
    ToggleMode,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from .controller import NetgearGS308EPController
    from .registry import ControllerRegistry

    DeviceResolver = Callable[[str], Awaitable[SwitchTarget | None]]

_LOGGER = logging.getLogger(__name__)


@dataclass
class _SwitchGroup:
    """Devices that share one switch."""

    target: SwitchTarget
    device_ids: list[str] = field(default_factory=list)
    commands: list[PortCommand] = field(default_factory=list)


class ToggleOrchestrator:
    """Groups device requests by switch and runs them through the registry.

    Switch groups are independent and run concurrently. Persisting the new
    device state is up to the caller, once it sees a successful result.
    """

    def __init__(
        self,
        registry: ControllerRegistry,
        resolver: DeviceResolver,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            registry: Source of switch controllers.
            resolver: Looks up where a device is plugged in; returns None
                for unknown devices.

        """
        self._registry = registry
        self._resolver = resolver

    async def async_toggle_single(
        self,
        device_id: str,
        enabled: bool,
    ) -> DeviceToggleResult:
        """Power one device on or off."""
        target = await self._resolver(device_id)
        if target is None:
            return DeviceToggleResult(
                device_id, success=False, error=f"Device {device_id} not found"
            )

        try:
            controller = self._registry.get_or_create(
                target.switch_type, target.credentials
            )
            await controller.async_toggle_port(target.port_number, enabled)
        except PoESwitchError as err:
            _LOGGER.warning("Failed to toggle device %s: %s", device_id, err)
            return DeviceToggleResult(device_id, success=False, error=str(err))

        _LOGGER.info(
            "%s port %d (%s)", "ON" if enabled else "OFF", target.port_number, device_id
        )
        return DeviceToggleResult(device_id, success=True)

    async def async_toggle_bulk(
        self,
        requests: Sequence[DeviceToggleRequest],
        mode: ToggleMode = ToggleMode.SEQUENTIAL,
        inter_delay: float = 0.0,
    ) -> list[DeviceToggleResult]:
        """Power several devices on or off.

        Devices the resolver does not know are skipped. Results keep the
        request order within a switch; there is no order across switches.

        Args:
            requests: Devices and their desired state.
            mode: Parallel or sequential execution within each switch.
            inter_delay: Seconds between ports in sequential mode.

        Returns:
            One result per resolved device.

        """
        groups = await self._async_group_by_switch(requests)
        group_results = await asyncio.gather(
            *(
                self._async_run_group(group, mode, inter_delay)
                for group in groups.values()
            )
        )
        results = [result for chunk in group_results for result in chunk]

        failed = [result for result in results if not result.success]
        if failed:
            _LOGGER.warning("%d of %d device(s) failed", len(failed), len(results))
        return results

    async def _async_group_by_switch(
        self,
        requests: Sequence[DeviceToggleRequest],
    ) -> dict[str, _SwitchGroup]:
        groups: dict[str, _SwitchGroup] = {}
        for request in requests:
            target = await self._resolver(request.device_id)
            if target is None:
                _LOGGER.debug("Skipping unknown device %s", request.device_id)
                continue

            group = groups.setdefault(target.switch_id, _SwitchGroup(target))
            group.device_ids.append(request.device_id)
            group.commands.append(PortCommand(target.port_number, request.enabled))
        return groups

    async def _async_run_group(
        self,
        group: _SwitchGroup,
        mode: ToggleMode,
        inter_delay: float,
    ) -> list[DeviceToggleResult]:
        target = group.target
        _LOGGER.debug(
            "%s mode: toggling %d port(s) on switch %s",
            mode,
            len(group.commands),
            target.switch_id,
        )
        try:
            controller = self._registry.get_or_create(
                target.switch_type, target.credentials
            )
            if mode == ToggleMode.PARALLEL:
                port_results = await controller.async_toggle_ports_parallel(
                    group.commands
                )
                return [
                    DeviceToggleResult(device_id, result.success, result.error)
                    for device_id, result in zip(
                        group.device_ids, port_results, strict=True
                    )
                ]
        except PoESwitchError as err:
            _LOGGER.warning("Switch %s failed: %s", target.switch_id, err)
            return [
                DeviceToggleResult(device_id, success=False, error=str(err))
                for device_id in group.device_ids
            ]

        return await self._async_run_sequential(controller, group, inter_delay)

    async def _async_run_sequential(
        self,
        controller: NetgearGS308EPController,
        group: _SwitchGroup,
        inter_delay: float,
    ) -> list[DeviceToggleResult]:
        results: dict[int, DeviceToggleResult] = {}
        batch: list[tuple[int, PortCommand]] = []
        for index, command in enumerate(group.commands):
            if is_valid_port(command.port_number):
                batch.append((index, command))
            else:
                results[index] = DeviceToggleResult(
                    group.device_ids[index],
                    success=False,
                    error=f"Invalid port number: {command.port_number}",
                )

        applied = 0

        def on_applied(_command: PortCommand) -> None:
            nonlocal applied
            index = batch[applied][0]
            results[index] = DeviceToggleResult(group.device_ids[index], success=True)
            applied += 1

        try:
            await controller.async_toggle_ports_batch(
                [command for _, command in batch], inter_delay, on_applied
            )
        except PoESwitchError as err:
            _LOGGER.warning(
                "Sequential toggle on switch %s stopped after %d port(s): %s",
                group.target.switch_id,
                applied,
                err,
            )
            failed_port = batch[applied][1].port_number
            for position, (index, _command) in enumerate(batch[applied:]):
                error = (
                    str(err)
                    if position == 0
                    else f"Not attempted after port {failed_port} failed"
                )
                results[index] = DeviceToggleResult(
                    group.device_ids[index], success=False, error=error
                )

        return [results[index] for index in range(len(group.commands))]
