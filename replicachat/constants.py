"""Project-wide constants for ReplicaChat."""

import os
import platform
from pathlib import Path

PROJECT_NAME = "replicachat"
PROJECT_DISPLAY_NAME = "ReplicaChat"
PROJECT_DESCRIPTION = "Gateway and reconciliation layer for hosted replica chatbots"
PROJECT_VERSION = "0.1.0"

# Default network config: LOOPBACK ONLY, never 0.0.0.0
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3100

# Data directories (cross-platform)
if platform.system() == "Windows":
    _appdata = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    DATA_DIR = _appdata / PROJECT_NAME
else:
    DATA_DIR = Path.home() / f".{PROJECT_NAME}"

CONFIG_FILE = DATA_DIR / "config.toml"
USER_CACHE_FILE = DATA_DIR / "users.json"

# Upstream defaults
DEFAULT_UPSTREAM_URL = "https://api.sensay.io"
DEFAULT_API_VERSION = "2025-03-25"

# Retry policy defaults (seconds)
USER_MAX_ATTEMPTS = 3
USER_ATTEMPT_TIMEOUT = 30.0
REPLICA_MAX_ATTEMPTS = 3
REPLICA_ATTEMPT_TIMEOUT = 60.0
RETRY_BACKOFF_DELAY = 2.0
CHAT_TIMEOUT = 30.0

# Identity derivation
ID_PREFIX_LENGTH = 20
ID_DIGEST_LENGTH = 12

REPLICA_TYPES = ("individual", "character", "brand")

# Sensitive content patterns: NEVER log or expose
SENSITIVE_PATTERNS = [
    r"sk-[a-zA-Z0-9\-]{20,}",          # OpenAI-style keys
    r"\b[0-9a-f]{64}\b",               # Organization secrets (hex)
    r"(?i)x-organization-secret['\"]?\s*[:=]\s*['\"]?[^\s'\",}]+",
    r"-----BEGIN.*PRIVATE KEY-----",    # Private keys
    r"[0-9]{4}[- ]?[0-9]{4}[- ]?[0-9]{4}[- ]?[0-9]{4}",  # Credit cards
    r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b",  # Emails (for DLP)
]
