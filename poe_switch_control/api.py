"""Protocol codec and HTTP exchanges for Netgear GS308EP PoE switches.

This module builds the vendor login and port-toggle requests, parses the
HTML pages served by the switch, and performs the individual HTTP exchanges
(login page, login, config page, toggle, logout). It keeps no session state;
see ``controller.py`` for that.
"""

import hashlib
import logging
import re
from collections.abc import Iterable

import httpx
from httpx_retries import Retry, RetryTransport

from .const import (
    DEFAULT_REQUEST_TIMEOUT,
    HTTP_OK,
    LOGIN_PATH,
    LOGOUT_PATH,
    LOGOUT_TIMEOUT,
    MAX_PORT,
    MIN_PORT,
    POE_CONFIG_PATH,
    PROBE_RETRIES,
    SESSION_COOKIE,
    TOGGLE_FORM_DEFAULTS,
    USER_AGENT,
)
from .models import PortCommand, PortStatus

_LOGGER = logging.getLogger(__name__)

_NONCE_RE = re.compile(r"id='rand'\s+value='([^']+)'")
_SESSION_RE = re.compile(rf"{SESSION_COOKIE}=([^;]+)")
_HASH_RE = re.compile(r"name='hash'[^>]*value=\"([^\"]+)\"")
_PORT_STATUS_RE = re.compile(
    r'<li class="poe_port_list_item[^>]*>[\s\S]*?'
    r'<input type="hidden" class="port" value="(\d+)"[\s\S]*?'
    r'<input type="hidden" class="hidPortPwr"[^>]*value="(\d+)"'
)


class PoESwitchError(Exception):
    """Base exception for PoE switch errors."""


class ProtocolError(PoESwitchError):
    """Exception raised when a switch page does not look as expected."""


class AuthError(PoESwitchError):
    """Exception raised when the switch refuses a login."""


class NetworkError(PoESwitchError):
    """Exception raised when the switch cannot be reached."""


class SwitchTimeoutError(NetworkError):
    """Exception raised when an exchange with the switch times out."""


class InvalidPortError(PoESwitchError):
    """Exception raised for a port number outside 1-8."""


class UnsupportedSwitchTypeError(PoESwitchError):
    """Exception raised for a switch type without a controller."""


class ToggleError(PoESwitchError):
    """Exception raised when the switch rejects a port toggle."""


def is_valid_port(port_number: int) -> bool:
    """Check if a port number exists on the switch."""
    return MIN_PORT <= port_number <= MAX_PORT


def validate_port(port_number: int) -> None:
    """Raise InvalidPortError unless the port is between 1 and 8."""
    if not is_valid_port(port_number):
        msg = f"Invalid port number: {port_number}. Must be {MIN_PORT}-{MAX_PORT}."
        raise InvalidPortError(msg)


def merge_password(password: str, nonce: str) -> str:
    """Interleave password and nonce characters, password first.

    Whatever is left of the longer string is appended in order, so
    ``merge_password("abc", "1")`` is ``"a1bc"``.
    """
    merged = []
    for index in range(max(len(password), len(nonce))):
        if index < len(password):
            merged.append(password[index])
        if index < len(nonce):
            merged.append(nonce[index])
    return "".join(merged)


def build_login_request(nonce: str, password: str) -> dict[str, str]:
    """Build the login form for the given nonce and clear-text password.

    Args:
        nonce: The ``rand`` value scraped from the login page.
        password: The switch admin password.

    Returns:
        Form fields for the login POST.

    """
    merged = merge_password(password, nonce)
    return {"password": hashlib.md5(merged.encode()).hexdigest()}  # noqa: S324


def build_toggle_form(hash_token: str, command: PortCommand) -> dict[str, str]:
    """Build the PoE config form that sets one port's admin mode.

    The switch addresses ports from 0, so physical port 1 is ``portID=0``.
    """
    return {
        "hash": hash_token,
        **TOGGLE_FORM_DEFAULTS,
        "portID": str(command.port_number - 1),
        "ADMIN_MODE": "1" if command.enabled else "0",
    }


def extract_nonce(login_page_html: str) -> str:
    """Extract the login nonce from the hidden ``rand`` input.

    Raises:
        ProtocolError: If the login page has no nonce.

    """
    match = _NONCE_RE.search(login_page_html)
    if match is None:
        msg = "Rand value not found in login page"
        raise ProtocolError(msg)
    return match.group(1)


def find_session_token(set_cookie_headers: Iterable[str]) -> str | None:
    """Return the ``SID=...`` cookie pair if one was set, else None."""
    match = _SESSION_RE.search(";".join(set_cookie_headers))
    if match is None:
        return None
    return f"{SESSION_COOKIE}={match.group(1)}"


def extract_session_token(set_cookie_headers: Iterable[str]) -> str:
    """Extract the session cookie pair from Set-Cookie headers.

    Raises:
        ProtocolError: If no session cookie was set.

    """
    token = find_session_token(set_cookie_headers)
    if token is None:
        msg = f"{SESSION_COOKIE} cookie not found"
        raise ProtocolError(msg)
    return token


def extract_hash_token(config_page_html: str) -> str:
    """Extract the single-use anti-replay token from the PoE config page.

    Raises:
        ProtocolError: If the page carries no hash token.

    """
    match = _HASH_RE.search(config_page_html)
    if match is None:
        msg = "Hash token not found in PoE config page"
        raise ProtocolError(msg)
    return match.group(1)


def parse_port_statuses(config_page_html: str) -> list[PortStatus]:
    """Parse per-port power state from the PoE config page.

    Fragments that do not match the port list markup are skipped.

    Returns:
        Port statuses sorted by port number.

    """
    statuses = [
        PortStatus(port=int(port), enabled=power == "1")
        for port, power in _PORT_STATUS_RE.findall(config_page_html)
    ]
    return sorted(statuses, key=lambda status: status.port)


def create_session_client(
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> httpx.AsyncClient:
    """Create the HTTP client used for authenticated switch traffic.

    No transport retries are configured: the session client decides when
    a failed exchange is retried, and with which session.
    """
    return httpx.AsyncClient(timeout=timeout, follow_redirects=False)


def create_probe_client(
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> httpx.AsyncClient:
    """Create an HTTP client with retry logic for unauthenticated probes.

    Returns:
        Configured httpx AsyncClient with retry transport.

    """
    retry = Retry(total=PROBE_RETRIES, backoff_factor=0.5)
    return httpx.AsyncClient(
        timeout=timeout,
        transport=RetryTransport(retry=retry),
    )


def _base_url(ip_address: str) -> str:
    return f"http://{ip_address}"


async def _async_request(
    session: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs,
) -> httpx.Response:
    """Perform one exchange, translating transport failures."""
    try:
        return await session.request(method, url, **kwargs)
    except httpx.TimeoutException as err:
        msg = f"Request to {url} timed out"
        raise SwitchTimeoutError(msg) from err
    except httpx.HTTPError as err:
        msg = f"Connection error for {url}: {err}"
        raise NetworkError(msg) from err


async def async_fetch_login_page(
    session: httpx.AsyncClient,
    ip_address: str,
) -> tuple[str, str | None]:
    """Fetch the login page nonce and the initial session cookie.

    Args:
        session: HTTP client session.
        ip_address: Switch address.

    Returns:
        Tuple of (nonce, initial session cookie or None).

    Raises:
        ProtocolError: If the page cannot be fetched or has no nonce.
        NetworkError: If the switch cannot be reached.

    """
    url = f"{_base_url(ip_address)}{LOGIN_PATH}"
    response = await _async_request(session, "GET", url)
    if response.status_code != HTTP_OK:
        msg = f"Failed to fetch login page: {response.status_code}"
        raise ProtocolError(msg)

    nonce = extract_nonce(response.text)
    initial_sid = find_session_token(response.headers.get_list("set-cookie"))
    return nonce, initial_sid


async def async_login(
    session: httpx.AsyncClient,
    ip_address: str,
    nonce: str,
    password: str,
    initial_sid: str | None = None,
) -> str:
    """Post the obfuscated password and return the session cookie.

    Raises:
        AuthError: If the switch answers with a non-200 status or sets no
            session cookie.
        NetworkError: If the switch cannot be reached.

    """
    base_url = _base_url(ip_address)
    headers = {
        "Origin": base_url,
        "Referer": f"{base_url}{LOGIN_PATH}",
        "User-Agent": USER_AGENT,
    }
    # The browser echoes the cookie from the login page, so do we
    if initial_sid:
        headers["Cookie"] = initial_sid

    response = await _async_request(
        session,
        "POST",
        f"{base_url}{LOGIN_PATH}",
        data=build_login_request(nonce, password),
        headers=headers,
    )
    if response.status_code != HTTP_OK:
        msg = f"Login failed: {response.status_code}"
        raise AuthError(msg)

    try:
        return extract_session_token(response.headers.get_list("set-cookie"))
    except ProtocolError as err:
        _LOGGER.error(
            "Login to %s returned no session cookie, body: %s",
            ip_address,
            response.text[:200],
        )
        msg = f"No session cookie received from login: {err}"
        raise AuthError(msg) from err


async def async_fetch_config_page(
    session: httpx.AsyncClient,
    ip_address: str,
    session_cookie: str,
) -> str:
    """Fetch the PoE port config page HTML.

    Raises:
        ProtocolError: If the switch answers with a non-200 status.
        NetworkError: If the switch cannot be reached.

    """
    response = await _async_request(
        session,
        "GET",
        f"{_base_url(ip_address)}{POE_CONFIG_PATH}",
        headers={"Cookie": session_cookie},
    )
    if response.status_code != HTTP_OK:
        msg = f"Failed to get PoE config page: {response.status_code}"
        raise ProtocolError(msg)
    return response.text


async def async_fetch_hash_token(
    session: httpx.AsyncClient,
    ip_address: str,
    session_cookie: str,
) -> str:
    """Fetch a fresh anti-replay hash token for the next toggle."""
    html = await async_fetch_config_page(session, ip_address, session_cookie)
    return extract_hash_token(html)


async def async_post_toggle(
    session: httpx.AsyncClient,
    ip_address: str,
    session_cookie: str,
    hash_token: str,
    command: PortCommand,
) -> None:
    """Post a port admin mode change.

    Raises:
        ToggleError: If the switch answers with a non-200 status.
        NetworkError: If the switch cannot be reached.

    """
    _LOGGER.debug(
        "Setting port %d on %s to %s",
        command.port_number,
        ip_address,
        "on" if command.enabled else "off",
    )
    response = await _async_request(
        session,
        "POST",
        f"{_base_url(ip_address)}{POE_CONFIG_PATH}",
        data=build_toggle_form(hash_token, command),
        headers={"Cookie": session_cookie, "X-Requested-With": "XMLHttpRequest"},
    )
    if response.status_code != HTTP_OK:
        msg = f"Failed to toggle port {command.port_number}: {response.status_code}"
        raise ToggleError(msg)


async def async_logout(
    session: httpx.AsyncClient,
    ip_address: str,
    session_cookie: str,
) -> None:
    """Log out to free the session slot on the switch. Best effort."""
    try:
        await _async_request(
            session,
            "GET",
            f"{_base_url(ip_address)}{LOGOUT_PATH}",
            headers={"Cookie": session_cookie},
            timeout=LOGOUT_TIMEOUT,
        )
    except NetworkError as err:
        _LOGGER.debug("Ignoring logout failure for %s: %s", ip_address, err)
