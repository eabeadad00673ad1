"""Data models for PoE switch control."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from .const import COUNTDOWN_TICK_INTERVAL, DEFAULT_KEEP_ALIVE_DURATION


class DeviceMode(StrEnum):
    """How a PoE device participates in automatic control."""

    AUTO = "auto"
    ALWAYS_ON = "always_on"
    ALWAYS_OFF = "always_off"


class ToggleMode(StrEnum):
    """Execution mode for a multi-port toggle on one switch."""

    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


@dataclass
class SwitchCredentials:
    """Address and password of a managed switch."""

    ip_address: str
    password: str


@dataclass(frozen=True)
class PortCommand:
    """Desired power state for one physical port (1-8)."""

    port_number: int
    enabled: bool


@dataclass(frozen=True)
class ToggleResult:
    """Outcome of toggling a single port."""

    port_number: int
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class PortStatus:
    """Power state of a port as reported by the config page."""

    port: int
    enabled: bool


@dataclass(frozen=True)
class SwitchTarget:
    """Where a device is plugged in, as resolved by the inventory."""

    switch_id: str
    switch_type: str
    credentials: SwitchCredentials
    port_number: int


@dataclass(frozen=True)
class DeviceToggleRequest:
    """Request to power a device on or off."""

    device_id: str
    enabled: bool


@dataclass(frozen=True)
class DeviceToggleResult:
    """Per-device outcome of a toggle request."""

    device_id: str
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class DeviceLinkage:
    """Inventory record linking a PoE device to the paging devices driving it."""

    device_id: str
    switch_id: str
    port_number: int
    mode: DeviceMode = DeviceMode.AUTO
    linked_paging_device_ids: frozenset[str] = frozenset()


@dataclass(slots=True)
class KeepAliveState:
    """Snapshot of the keep-alive state machine."""

    is_on: bool
    countdown_remaining: int | None
    excluded_device_ids: frozenset[str]


@dataclass
class KeepAliveSettings:
    """Tunables for the keep-alive coordinator."""

    keep_alive_duration: float = DEFAULT_KEEP_ALIVE_DURATION
    toggle_mode: ToggleMode = ToggleMode.SEQUENTIAL
    toggle_delay: float = 0.0
    simulation: bool = False
    tick_interval: float = COUNTDOWN_TICK_INTERVAL
