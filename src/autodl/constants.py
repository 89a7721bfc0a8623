"""Shared constants for the auto-download runner and report schema."""

STATE_INIT = "init"
STATE_SCANNING = "scanning"
STATE_BUSY_BACKOFF = "busy_backoff"
STATE_RELOAD_PENDING = "reload_pending"
STATE_RESOLVED = "resolved"
STATE_GIVEN_UP = "given_up"
STATE_TIMED_OUT = "timed_out"

# States after which a machine instance schedules nothing further.
TERMINAL_STATES = frozenset(
    {
        STATE_RELOAD_PENDING,
        STATE_RESOLVED,
        STATE_GIVEN_UP,
        STATE_TIMED_OUT,
    }
)

REQUIRED_REPORT_KEYS = (
    "run_id",
    "url",
    "final_state",
    "result",
    "reloads",
    "instances",
    "observations",
    "downloads",
    "log_path",
)

ALLOWED_RESULT_VALUES = {"success", "partial", "failed"}

LOG_PREFIX = "[autodl]"
LOG_LEVELS = ("debug", "info", "warning", "error")

# Defaults mirror the timings the downloader was tuned with.
DEFAULT_INITIAL_WAIT_MS = 7000
DEFAULT_POLL_INTERVAL_MS = 500
DEFAULT_WATCHDOG_MS = 30000
DEFAULT_MAX_RELOADS = 3
DEFAULT_BACKOFF_FACTOR = 1.8
DEFAULT_MIN_BACKOFF_MS = 2000
DEFAULT_START_DELAY_MS = 150
DEFAULT_STORAGE_KEY = "wormhole_autodl_reloads"

# Text the page shows while it is still encrypting/uploading.
BUSY_TEXTS = (
    "Encrypting",
    "Encrypting...",
    "Uploading",
    "Uploading...",
    "Uploaded",
    "You can close this page now",
    "downloadError",
)

BUSY_MARKER_SELECTORS = (
    '[aria-busy="true"]',
    '[data-loading="true"]',
    ".loading",
    ".spinner",
)

DOWNLOAD_TEXT_PATTERN = r"\b(download|download file|download all files|download files|get file)\b"
FILE_HREF_PATTERN = r"\.(zip|pdf|tar|gz|exe|msi|dmg|bin|jpg|jpeg|png|mp4|webm)(\?|$)"
TEST_ID_PATTERN = r"download"

SPECIFIC_SELECTORS = (
    "button.chakra-button",
    "a.chakra-link.chakra-button",
    'a[href*="download"]',
    "a[download]",
    'button[aria-label*="Download"]',
    'button[title*="Download"]',
)

CLICKABLE_SELECTOR = 'a, button, input[type="button"], input[type="submit"], [role="button"]'
DOWNLOAD_ATTR_SELECTOR = "[download]"
FILE_LINK_SELECTOR = "a[href]"

TEST_ID_ATTRIBUTES = ("data-testid", "data-test", "data-download")

ACTIVATION_EVENT_SEQUENCE = ("pointerdown", "mousedown", "click", "mouseup")
