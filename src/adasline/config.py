"""Environment configuration and tunables.

Checks that required environment variables are set before the server
accepts calls.  Called from bot.py at import time so that a missing key
causes a clear startup failure rather than a dead line mid-call.
"""

import os
import sys
import logging

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "OPENAI_API_KEY",
    "GAS_WEBHOOK_URL",
]

OPTIONAL_VARS = [
    "GAS_TOKEN",
    "OPENAI_MODEL",
    "BASE_URL",
    "RANDY_PHONE",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TECH_ROUTING_PATH",
    "LOG_LEVEL",
]

DEFAULT_OPENAI_MODEL = "gpt-4o-realtime-preview-2024-10-01"
DEFAULT_RANDY_PHONE = "+17865551234"
BUSINESS_TIMEZONE = "America/New_York"

# Consecutive full-sentence utterances in the other language before a locked
# language flips.
LANGUAGE_SWITCH_THRESHOLD = 2

# Used when a schedule phrase carries a date but no time.
DEFAULT_SCHEDULE_TIME = "9:00 AM"

GREETING_DELAY_S = 0.25
TOOL_DEDUP_WINDOW_S = 3.0
DEDUP_PRUNE_AGE_S = 30.0
DEDUP_PRUNE_SIZE = 20


def openai_model() -> str:
    return os.getenv("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL


def randy_phone() -> str:
    return os.getenv("RANDY_PHONE") or DEFAULT_RANDY_PHONE


def public_host() -> str:
    """Public hostname Twilio should call back into (no scheme)."""
    base = os.getenv("BASE_URL") or os.getenv("NGROK_URL") or "localhost:8765"
    for prefix in ("https://", "http://", "wss://", "ws://"):
        if base.startswith(prefix):
            base = base[len(prefix):]
    return base.rstrip("/")


def validate_config() -> None:
    """Validate environment variables at startup.

    Exits the process with a clear error if any required variable is missing
    or empty.  Logs warnings for missing optional variables.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env (local) or in the host's secret store.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)
