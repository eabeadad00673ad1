"""Pytest configuration and fixtures for PoE switch control tests."""

import re

import httpx
import pytest
import pytest_asyncio

from poe_switch_control.controller import NetgearGS308EPController
from poe_switch_control.models import SwitchCredentials

SWITCH_IP = "192.168.0.239"
SWITCH_PASSWORD = "password"
NONCE = "374961091"
SESSION_COOKIE = "SID=session123"

BASE_URL = f"http://{SWITCH_IP}"
LOGIN_URL = f"{BASE_URL}/login.cgi"
LOGOUT_URL = f"{BASE_URL}/logout.cgi"
CONFIG_URL = f"{BASE_URL}/PoEPortConfig.cgi"


def create_login_page(nonce: str = NONCE) -> str:
    """Create a login page carrying the given nonce."""
    return (
        "<html><body><form>"
        f"<input type=hidden id='rand' value='{nonce}' disabled>"
        "<input type=password name='password'>"
        "</form></body></html>"
    )


def create_config_page(
    port_states: dict[int, bool] | None = None,
    hash_token: str = "hash-token-1",
) -> str:
    """Create a PoE config page listing the given ports.

    Args:
        port_states: Power state per port. Defaults to eight ports, all off.
        hash_token: Anti-replay token embedded in the page.

    Returns:
        HTML resembling the switch's PoEPortConfig.cgi page.

    """
    if port_states is None:
        port_states = dict.fromkeys(range(1, 9), False)

    items = "".join(
        f'<li class="poe_port_list_item port_{port}">'
        f'<span>Port {port}</span>'
        f'<input type="hidden" class="port" value="{port}">'
        f'<input type="hidden" class="hidPortPwr" id="hidPortPwr" value="{int(enabled)}">'
        "</li>"
        for port, enabled in port_states.items()
    )
    return (
        "<html><body>"
        f"<input type=hidden name='hash' id='hash' value=\"{hash_token}\">"
        f"<ul>{items}</ul>"
        "</body></html>"
    )


def form_field(request: httpx.Request, name: str) -> str | None:
    """Read a field from a form-encoded request body."""
    match = re.search(rf"(?:^|&){name}=([^&]*)", request.content.decode())
    return match.group(1) if match else None


_SID_RE = re.compile(r"SID=session\d+")


class FakeSwitch:
    """In-memory GS308EP web interface for httpx_mock callbacks.

    Hash tokens are single use, like on the real switch: a toggle POST must
    present a token handed out by an earlier config page fetch. Config
    requests without a live session are redirected to the login page.
    """

    def __init__(self) -> None:
        self.port_states = dict.fromkeys(range(1, 9), False)
        self.reject_login = False
        self.fail_ports: set[int] = set()
        self.fail_attempts: set[int] = set()
        self.logins = 0
        self.logouts = 0
        self.toggles: list[tuple[int, bool]] = []
        self.toggle_attempts = 0
        self._hash_counter = 0
        self._issued_hashes: set[str] = set()
        self._sessions: set[str] = set()

    def expire_sessions(self) -> None:
        """Forget every session, as a reboot of the switch would."""
        self._sessions.clear()

    def _has_session(self, request: httpx.Request) -> bool:
        match = _SID_RE.search(request.headers.get("Cookie", ""))
        return match is not None and match.group(0) in self._sessions

    def __call__(self, request: httpx.Request) -> httpx.Response:
        route = (request.method, request.url.path)
        if route == ("GET", "/login.cgi"):
            return httpx.Response(
                200,
                text=create_login_page(),
                headers=[("Set-Cookie", "SID=initial; path=/")],
            )
        if route == ("POST", "/login.cgi"):
            self.logins += 1
            if self.reject_login:
                return httpx.Response(401)
            sid = f"SID=session{self.logins}"
            self._sessions.add(sid)
            return httpx.Response(200, headers=[("Set-Cookie", f"{sid}; path=/")])
        if route == ("GET", "/logout.cgi"):
            self.logouts += 1
            match = _SID_RE.search(request.headers.get("Cookie", ""))
            if match is not None:
                self._sessions.discard(match.group(0))
            return httpx.Response(200)
        if route[1] == "/PoEPortConfig.cgi" and not self._has_session(request):
            return httpx.Response(302, headers={"Location": "/login.cgi"})
        if route == ("GET", "/PoEPortConfig.cgi"):
            self._hash_counter += 1
            token = f"hash-{self._hash_counter}"
            self._issued_hashes.add(token)
            return httpx.Response(
                200, text=create_config_page(self.port_states, hash_token=token)
            )
        if route == ("POST", "/PoEPortConfig.cgi"):
            return self._toggle(request)
        return httpx.Response(404)

    def _toggle(self, request: httpx.Request) -> httpx.Response:
        token = form_field(request, "hash")
        if token not in self._issued_hashes:
            return httpx.Response(403)
        self._issued_hashes.discard(token)

        self.toggle_attempts += 1
        port = int(form_field(request, "portID")) + 1
        if self.toggle_attempts in self.fail_attempts or port in self.fail_ports:
            return httpx.Response(500)

        enabled = form_field(request, "ADMIN_MODE") == "1"
        self.port_states[port] = enabled
        self.toggles.append((port, enabled))
        return httpx.Response(200)


@pytest.fixture
def fake_switch(httpx_mock) -> FakeSwitch:
    """Fixture routing every HTTP request to a fake switch."""
    switch = FakeSwitch()
    httpx_mock.add_callback(switch, is_reusable=True)
    return switch


@pytest.fixture
def credentials() -> SwitchCredentials:
    """Fixture providing switch credentials."""
    return SwitchCredentials(ip_address=SWITCH_IP, password=SWITCH_PASSWORD)


@pytest_asyncio.fixture
async def session():
    """Fixture providing an HTTP client closed after the test."""
    async with httpx.AsyncClient(timeout=5.0) as client:
        yield client


@pytest.fixture
def controller(
    credentials: SwitchCredentials,
    session: httpx.AsyncClient,
) -> NetgearGS308EPController:
    """Fixture providing a controller that never sleeps."""
    return NetgearGS308EPController(
        credentials, session, login_pacing=0, retry_backoff=0
    )
