"""Constants for the PoE switch control package.

This module contains the vendor protocol details (CGI paths and form
fields) and the timing defaults used throughout the package.
"""

SWITCH_TYPE_NETGEAR_GS308EP = "netgear_gs308ep"

HTTP_OK = 200

LOGIN_PATH = "/login.cgi"
LOGOUT_PATH = "/logout.cgi"
POE_CONFIG_PATH = "/PoEPortConfig.cgi"

SESSION_COOKIE = "SID"
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36"
)

MIN_PORT = 1
MAX_PORT = 8

# Fixed fields the PoE config form posts alongside the admin mode
TOGGLE_FORM_DEFAULTS = {
    "ACTION": "Apply",
    "PORT_PRIO": "0",
    "POW_MOD": "3",
    "POW_LIMT_TYP": "2",
    "POW_LIMT": "30.0",
    "DETEC_TYP": "2",
    "DISCONNECT_TYP": "2",
}

DEFAULT_REQUEST_TIMEOUT = 10.0  # seconds
LOGOUT_TIMEOUT = 3.0
LOGIN_PACING_DELAY = 0.5  # the switch closes each connection, give it a breather
RETRY_BACKOFF = 1.0
PROBE_RETRIES = 2

DEFAULT_KEEP_ALIVE_DURATION = 240  # seconds
COUNTDOWN_TICK_INTERVAL = 1.0
