"""Command line for probing and switching PoE ports on a single switch.

Each command opens its own registry, so sessions never outlive the command.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import TYPE_CHECKING, Annotated, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from .api import PoESwitchError
from .const import SWITCH_TYPE_NETGEAR_GS308EP
from .log import setup_logging
from .models import SwitchCredentials
from .registry import ControllerRegistry

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .controller import NetgearGS308EPController
    from .models import PortStatus

_T = TypeVar("_T")

app = typer.Typer(help="Drive PoE ports on a managed switch", no_args_is_help=True)

IpArg = Annotated[str, typer.Argument(help="Switch IP address")]
PasswordOpt = Annotated[
    str,
    typer.Option("--password", "-p", envvar="POE_SWITCH_PASSWORD", help="Admin password"),
]
TypeOpt = Annotated[str, typer.Option("--type", "-t", help="Switch type")]


class PowerState(str, Enum):
    """Desired port power on the command line."""

    ON = "on"
    OFF = "off"


async def _with_controller(
    switch_type: str,
    credentials: SwitchCredentials,
    action: Callable[[NetgearGS308EPController], Awaitable[_T]],
) -> _T:
    registry = ControllerRegistry()
    try:
        controller = registry.get_or_create(switch_type, credentials)
        return await action(controller)
    finally:
        await registry.async_close()


def _run(
    switch_type: str,
    credentials: SwitchCredentials,
    action: Callable[[NetgearGS308EPController], Awaitable[_T]],
) -> _T:
    try:
        return asyncio.run(_with_controller(switch_type, credentials, action))
    except PoESwitchError as err:
        Console(stderr=True).print(f"[red]✗[/red] {err}")
        raise typer.Exit(1) from err


@app.command()
def probe(
    ip_address: IpArg,
    switch_type: TypeOpt = SWITCH_TYPE_NETGEAR_GS308EP,
) -> None:
    """Check that the switch serves its login page."""
    credentials = SwitchCredentials(ip_address, "")
    reachable = _run(
        switch_type, credentials, lambda controller: controller.async_test_connection()
    )

    console = Console()
    if not reachable:
        console.print(f"[red]✗[/red] {ip_address} is not reachable")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] {ip_address} is reachable")


@app.command()
def status(
    ip_address: IpArg,
    password: PasswordOpt,
    switch_type: TypeOpt = SWITCH_TYPE_NETGEAR_GS308EP,
) -> None:
    """Show the PoE power state of every port."""
    statuses: list[PortStatus] = _run(
        switch_type,
        SwitchCredentials(ip_address, password),
        lambda controller: controller.async_get_port_statuses(),
    )

    table = Table(title=f"PoE ports on {ip_address}")
    table.add_column("Port", justify="right", style="cyan")
    table.add_column("Power")
    for port_status in statuses:
        table.add_row(
            str(port_status.port),
            "[green]on[/green]" if port_status.enabled else "[dim]off[/dim]",
        )
    Console().print(table)


@app.command()
def toggle(
    ip_address: IpArg,
    port: Annotated[int, typer.Argument(help="Physical port, 1-8")],
    state: Annotated[PowerState, typer.Argument(help="on or off")],
    password: PasswordOpt,
    switch_type: TypeOpt = SWITCH_TYPE_NETGEAR_GS308EP,
) -> None:
    """Switch PoE power on a port."""
    enabled = state is PowerState.ON
    _run(
        switch_type,
        SwitchCredentials(ip_address, password),
        lambda controller: controller.async_toggle_port(port, enabled),
    )
    Console().print(f"[green]✓[/green] Port {port} {state.value}")


@app.callback()
def main(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log debug output")
    ] = False,
) -> None:
    """PoE switch control."""
    setup_logging("DEBUG" if verbose else None)
