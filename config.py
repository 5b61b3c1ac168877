"""
config.py -- All tunable parameters for the territory explorer.

Every value here is loaded from environment variables so you can point the
explorer at a different ledger gateway (or a local .env file) without
touching code.

HOW TO READ THIS FILE:
  Each config value has a comment explaining:
    1. What it controls
    2. What happens if you raise/lower it
    3. The default and why it was chosen
"""

import os

# ---------------------------------------------------------------------------
# Helper: read an env var with a typed default
# ---------------------------------------------------------------------------

def _env(name, default, cast=str):
    """
    Read an environment variable and cast it to the right type.
    If the var is missing or empty, return *default* (already the right type).
    """
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        # Special handling for booleans -- "true"/"1"/"yes" are all truthy
        if cast is bool:
            return raw.strip().lower() in ("true", "1", "yes")
        return cast(raw)
    except (ValueError, TypeError):
        return default


# ---------------------------------------------------------------------------
# Ledger gateway
# ---------------------------------------------------------------------------

# JSON-RPC endpoint that exposes the territory contract's named methods.
# A local node/gateway is the default so a fresh checkout never talks to a
# public network by accident.
LEDGER_RPC_URL: str = _env("LEDGER_RPC_URL", "http://127.0.0.1:8545")

# Address of the territory contract.  Sent along with every call so one
# gateway can serve several deployments.
LEDGER_CONTRACT_ADDRESS: str = _env("LEDGER_CONTRACT_ADDRESS", "")

# Account the explorer acts as.  Empty means "no wallet connected": the view
# still works, nothing is tagged as owned, and every mutation is refused.
ACCOUNT_ADDRESS: str = _env("ACCOUNT_ADDRESS", "")

# ---------------------------------------------------------------------------
# Tree geometry
# ---------------------------------------------------------------------------

# Well-known id of the global root territory.  Ancestry lookups that fail
# fall back to this id.
ROOT_TERRITORY_ID: int = _env("ROOT_TERRITORY_ID", 1, int)

# Territory shown when a session starts.
START_TERRITORY_ID: int = _env("START_TERRITORY_ID", ROOT_TERRITORY_ID, int)

# Fixed-point scale used on-ledger for both amounts and coordinates.
# 18 matches the ERC-1155 value token; change only with the contract.
VALUE_DECIMALS: int = _env("VALUE_DECIMALS", 18, int)

# Coordinates are stored unsigned as (x + offset) * 10**decimals.  The
# fractal plane of interest lives inside [-2, 2], hence the default.
REGION_OFFSET: float = _env("REGION_OFFSET", 2.0, float)

# ---------------------------------------------------------------------------
# RPC behaviour
# ---------------------------------------------------------------------------

# Per-request timeout.  Raising it tolerates slow gateways; lowering it
# surfaces failures to the error sink sooner.
RPC_TIMEOUT_SEC: float = _env("RPC_TIMEOUT_SEC", 15.0, float)

# How many times a *read* call is retried on transport failure.
# Transactions are never retried.
RPC_MAX_RETRIES: int = _env("RPC_MAX_RETRIES", 3, int)

# First retry waits this long, doubling each attempt.
RPC_RETRY_BASE_SEC: float = _env("RPC_RETRY_BASE_SEC", 1.0, float)

# Client-side call budget: bucket size and refill rate (calls per second).
RPC_RATE_BUDGET: int = _env("RPC_RATE_BUDGET", 15, int)
RPC_RATE_DECAY: float = _env("RPC_RATE_DECAY", 1.0, float)

# ---------------------------------------------------------------------------
# Canvas
# ---------------------------------------------------------------------------

# Pixel size of the rendering surface.  Used to convert a territory region
# into a viewport scale when focusing on it.
CANVAS_WIDTH: int = _env("CANVAS_WIDTH", 1500, int)
CANVAS_HEIGHT: int = _env("CANVAS_HEIGHT", 1500, int)

# Pixels trimmed from each edge of the viewport when it is turned into a
# bid region.  0 = the bid covers exactly what is on screen.
BID_MARGIN_PX: int = _env("BID_MARGIN_PX", 0, int)

# ---------------------------------------------------------------------------
# Error forwarding
# ---------------------------------------------------------------------------

# Telegram bot token (from @BotFather) and your chat ID (from @userinfobot).
# If either is missing, failures are only logged.
TELEGRAM_BOT_TOKEN: str = _env("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_CHAT_ID: str = _env("TELEGRAM_CHAT_ID", "")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

# DEBUG shows every discarded stale response; INFO is quiet enough to leave on.
LOG_LEVEL: str = _env("LOG_LEVEL", "INFO")

# ---------------------------------------------------------------------------
# Startup banner -- printed when the explorer launches
# ---------------------------------------------------------------------------

def print_banner():
    """Print a clear summary of all active settings so you know what's running."""
    lines = [
        "",
        "=" * 60,
        "  TERRITORY EXPLORER",
        "=" * 60,
        f"  Ledger RPC:      {LEDGER_RPC_URL}",
        f"  Contract:        {LEDGER_CONTRACT_ADDRESS or 'NOT SET'}",
        f"  Account:         {ACCOUNT_ADDRESS or 'not connected'}",
        f"  Root territory:  {ROOT_TERRITORY_ID}",
        f"  Start territory: {START_TERRITORY_ID}",
        f"  Value decimals:  {VALUE_DECIMALS}",
        f"  RPC timeout:     {RPC_TIMEOUT_SEC:.1f}s ({RPC_MAX_RETRIES} read retries)",
        f"  Rate budget:     {RPC_RATE_BUDGET} calls @ {RPC_RATE_DECAY:.1f}/s",
        f"  Canvas:          {CANVAS_WIDTH}x{CANVAS_HEIGHT} (bid margin {BID_MARGIN_PX}px)",
        f"  Log level:       {LOG_LEVEL}",
        f"  Telegram:        {'configured' if TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID else 'NOT SET'}",
        "=" * 60,
        "",
    ]
    print("\n".join(lines))
