"""Session client for a single Netgear GS308EP PoE switch."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, TypeVar

from . import api
from .api import PoESwitchError, ProtocolError, is_valid_port, validate_port
from .const import LOGIN_PACING_DELAY, RETRY_BACKOFF
from .models import PortCommand, PortStatus, SwitchCredentials, ToggleResult

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    import httpx

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")


class NetgearGS308EPController:
    """Client owning one switch's session.

    The switch's embedded web server copes with one session sequence at a
    time, so every operation except ``async_toggle_ports_parallel`` runs
    through a per-switch FIFO lock. Logins are single-flight: concurrent
    callers share one in-flight login task and its outcome.
    """

    def __init__(
        self,
        credentials: SwitchCredentials,
        session: httpx.AsyncClient,
        *,
        login_pacing: float = LOGIN_PACING_DELAY,
        retry_backoff: float = RETRY_BACKOFF,
    ) -> None:
        """Initialize the controller.

        Args:
            credentials: Switch address and password.
            session: Shared HTTP client.
            login_pacing: Pause between fetching the login page and posting
                the login form.
            retry_backoff: Pause before retrying a failed operation.

        """
        self._ip_address = credentials.ip_address
        self._password = credentials.password
        self._session = session
        self._login_pacing = login_pacing
        self._retry_backoff = retry_backoff

        self._session_cookie: str | None = None
        self._login_task: asyncio.Task[str] | None = None
        # asyncio.Lock wakes waiters in arrival order
        self._queue = asyncio.Lock()
        self._background_tasks: set[asyncio.Task[None]] = set()

    @property
    def ip_address(self) -> str:
        """Return the switch address currently in use."""
        return self._ip_address

    @property
    def has_session(self) -> bool:
        """Return True if a session cookie is cached."""
        return self._session_cookie is not None

    async def async_login(self) -> str:
        """Return a valid session cookie, logging in if needed.

        Raises:
            AuthError: If the switch refuses the login.
            ProtocolError: If the login page is malformed.
            NetworkError: If the switch cannot be reached.

        """
        while self._session_cookie is None:
            if self._login_task is None:
                self._login_task = asyncio.create_task(self._async_login_and_cache())
            cookie = await asyncio.shield(self._login_task)
            if cookie is not None:
                return cookie
        return self._session_cookie

    async def _async_login_and_cache(self) -> str | None:
        """Log in and cache the cookie, or return None if superseded."""
        task = asyncio.current_task()
        try:
            cookie = await self._async_perform_login()
        finally:
            superseded = self._login_task is not task
            if not superseded:
                self._login_task = None

        # Credentials changed or the session was cleared during the login
        if superseded:
            return None
        self._session_cookie = cookie
        return cookie

    async def _async_perform_login(self) -> str:
        _LOGGER.info("Performing fresh login to %s", self._ip_address)
        # Credentials may change during the pacing sleep
        ip_address = self._ip_address
        password = self._password
        nonce, initial_sid = await api.async_fetch_login_page(self._session, ip_address)
        _LOGGER.debug(
            "Got login nonce from %s, initial SID: %s",
            ip_address,
            "yes" if initial_sid else "no",
        )

        await asyncio.sleep(self._login_pacing)

        return await api.async_login(
            self._session,
            ip_address,
            nonce,
            password,
            initial_sid,
        )

    async def _async_invalidate_session(self) -> None:
        """Log out the cached session, if any, and forget it."""
        cookie = self._session_cookie
        self._session_cookie = None
        if cookie is not None:
            await api.async_logout(self._session, self._ip_address, cookie)

    async def _async_apply(self, cookie: str, command: PortCommand) -> None:
        hash_token = await api.async_fetch_hash_token(
            self._session, self._ip_address, cookie
        )
        await api.async_post_toggle(
            self._session, self._ip_address, cookie, hash_token, command
        )

    async def _async_with_retry(
        self,
        description: str,
        operation: Callable[[], Awaitable[_T]],
    ) -> _T:
        """Run ``operation`` once more on a fresh session if it fails.

        Must be called with the queue held.
        """
        try:
            return await operation()
        except PoESwitchError as err:
            _LOGGER.warning(
                "%s on %s failed: %s, retrying", description, self._ip_address, err
            )

        # The session may have expired on the switch
        await self._async_invalidate_session()
        await asyncio.sleep(self._retry_backoff)

        try:
            return await operation()
        except PoESwitchError:
            self._session_cookie = None
            raise

    async def async_toggle_port(self, port_number: int, enabled: bool) -> None:
        """Switch PoE power for one port, retrying once on failure.

        Raises:
            InvalidPortError: If the port is outside 1-8.
            PoESwitchError: If the retry also fails.

        """
        validate_port(port_number)
        command = PortCommand(port_number, enabled)

        async def toggle() -> None:
            cookie = await self.async_login()
            await self._async_apply(cookie, command)

        async with self._queue:
            await self._async_with_retry(f"Toggle port {port_number}", toggle)
        _LOGGER.debug(
            "Port %d on %s is now %s",
            port_number,
            self._ip_address,
            "on" if enabled else "off",
        )

    async def async_enable_port(self, port_number: int) -> None:
        """Enable PoE power on a port."""
        await self.async_toggle_port(port_number, True)

    async def async_disable_port(self, port_number: int) -> None:
        """Disable PoE power on a port."""
        await self.async_toggle_port(port_number, False)

    async def async_toggle_ports_batch(
        self,
        commands: Sequence[PortCommand],
        inter_command_delay: float = 0.0,
        on_applied: Callable[[PortCommand], None] | None = None,
    ) -> None:
        """Apply several port commands in order within one queue slot.

        A failing command aborts the rest of the batch. The batch is retried
        once on a fresh session, resuming at the failed command; commands
        already applied are neither repeated nor rolled back.

        Args:
            commands: Port commands to apply in order.
            inter_command_delay: Seconds to wait between commands.
            on_applied: Called with each command once the switch accepted it.

        Raises:
            InvalidPortError: If any command has a port outside 1-8.
            PoESwitchError: If the retry also fails.

        """
        for command in commands:
            validate_port(command.port_number)
        if not commands:
            return

        applied = 0

        async def run_remaining() -> None:
            nonlocal applied
            cookie = await self.async_login()
            for index in range(applied, len(commands)):
                if index > 0 and inter_command_delay > 0:
                    await asyncio.sleep(inter_command_delay)
                command = commands[index]
                await self._async_apply(cookie, command)
                applied += 1
                if on_applied is not None:
                    on_applied(command)

        async with self._queue:
            await self._async_with_retry(
                f"Batch of {len(commands)} port commands", run_remaining
            )

    async def async_toggle_ports_parallel(
        self,
        commands: Sequence[PortCommand],
    ) -> list[ToggleResult]:
        """Toggle several ports concurrently, bypassing the request queue.

        Faster than a batch, at the cost of many simultaneous connections to
        the switch. Per-port failures are reported, not raised, and drop the
        session so that the next call logs in afresh.

        Returns:
            One result per command, in request order.

        Raises:
            PoESwitchError: If logging in fails.

        """
        if not commands:
            return []

        # Invalid ports fail on their own without any network traffic
        needs_session = any(is_valid_port(c.port_number) for c in commands)
        cookie = await self.async_login() if needs_session else ""

        async def toggle(command: PortCommand) -> ToggleResult:
            try:
                validate_port(command.port_number)
                await self._async_apply(cookie, command)
            except PoESwitchError as err:
                _LOGGER.warning(
                    "Parallel toggle of port %d on %s failed: %s",
                    command.port_number,
                    self._ip_address,
                    err,
                )
                return ToggleResult(command.port_number, success=False, error=str(err))
            return ToggleResult(command.port_number, success=True)

        results = list(await asyncio.gather(*(toggle(c) for c in commands)))
        if any(
            not result.success and is_valid_port(result.port_number)
            for result in results
        ):
            await self._async_discard_session(cookie)
        return results

    async def _async_discard_session(self, cookie: str) -> None:
        """Log out ``cookie`` if it is still the cached session.

        Another caller may have replaced the session in the meantime; that
        one is left alone.
        """
        async with self._queue:
            if self._session_cookie == cookie:
                _LOGGER.debug("Dropping session for %s after failures", self._ip_address)
                await self._async_invalidate_session()

    async def async_get_port_statuses(self) -> list[PortStatus]:
        """Read the power state of every port, sorted by port number."""

        async def read() -> list[PortStatus]:
            cookie = await self.async_login()
            html = await api.async_fetch_config_page(
                self._session, self._ip_address, cookie
            )
            return api.parse_port_statuses(html)

        async with self._queue:
            return await self._async_with_retry("Reading port statuses", read)

    async def async_get_port_status(self, port_number: int) -> bool:
        """Return True if the given port is powered.

        Raises:
            ProtocolError: If the config page does not list the port.

        """
        for status in await self.async_get_port_statuses():
            if status.port == port_number:
                return status.enabled
        msg = f"Port {port_number} not found"
        raise ProtocolError(msg)

    def update_credentials(self, credentials: SwitchCredentials) -> None:
        """Adopt new credentials, dropping the session if they changed.

        The old session is logged out in the background; the caller never
        waits for it.
        """
        if (
            credentials.ip_address == self._ip_address
            and credentials.password == self._password
        ):
            return

        _LOGGER.info("Credentials for switch %s changed", self._ip_address)
        if self._session_cookie is not None:
            self._spawn_logout(self._ip_address, self._session_cookie)

        self._ip_address = credentials.ip_address
        self._password = credentials.password
        self._session_cookie = None
        self._login_task = None

    def _spawn_logout(self, ip_address: str, cookie: str) -> None:
        try:
            task = asyncio.get_running_loop().create_task(
                api.async_logout(self._session, ip_address, cookie)
            )
        except RuntimeError:
            _LOGGER.debug("No running loop, skipping logout of %s", ip_address)
            return

        self._background_tasks.add(task)
        task.add_done_callback(self._on_logout_done)

    def _on_logout_done(self, task: asyncio.Task[None]) -> None:
        self._background_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            _LOGGER.warning("Background logout failed: %s", task.exception())

    async def async_clear_session(self) -> None:
        """Log out and forget the cached session. Safe to call repeatedly."""
        await self._async_invalidate_session()
        self._login_task = None

    async def async_test_connection(self) -> bool:
        """Return True if the switch serves its login page."""
        try:
            async with api.create_probe_client() as probe:
                await api.async_fetch_login_page(probe, self._ip_address)
        except PoESwitchError as err:
            _LOGGER.warning("Connection test to %s failed: %s", self._ip_address, err)
            return False
        return True
