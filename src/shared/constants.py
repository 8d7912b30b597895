"""Shared constants used across the release gate and discovery packages."""
from __future__ import annotations

# Application version
VERSION: str = "1.0.0"
APP_NAME: str = "release-gate"

# Remote service endpoints
DEFAULT_BASE_URL: str = "https://app.armorcode.com"
BUILD_VALIDATION_PATH: str = "/client/build"
DISCOVERY_PATH: str = "/client/builds/jobs/discovery/monitoring"
PING_PATH: str = "/client/ping"
DEFAULT_DETAILS_LINK: str = "https://app.armorcode.com/client/integrations/jenkins"

# HTTP timeouts (seconds)
GATE_TIMEOUT_S: float = 60.0
PING_TIMEOUT_S: float = 5.0
DISCOVERY_CONNECT_TIMEOUT_S: float = 10.0
DISCOVERY_READ_TIMEOUT_S: float = 30.0

# Error bodies are cut to this many characters before logging
MAX_ERROR_BODY_CHARS: int = 500

# Gate defaults
DEFAULT_MODE: str = "block"
DEFAULT_MAX_RETRIES: int = 5
DEFAULT_RETRY_DELAY_S: int = 20
DEFAULT_FAILURE_REASON: str = "SLA check failed"

# Discovery defaults
DEFAULT_CRON: str = "H H * * *"
DEFAULT_INCLUDE_PATTERN: str = ".*"
DEFAULT_EXCLUDE_PATTERN: str = ""
BATCH_SIZE: int = 50
BATCH_DELAY_S: float = 1.0
BUILD_TOOL: str = "JENKINS"

# Scheduler intervals (seconds)
DISABLED_INTERVAL_S: int = 7 * 24 * 3600
DAILY_INTERVAL_S: int = 24 * 3600
FALLBACK_INTERVAL_S: int = 3600
MIN_INTERVAL_S: int = 60

# Invocation metadata recorded by the gate
PARAM_PREFIX: str = "ArmorCode."
PARAM_GATE_USED: str = "ArmorCode.GateUsed"
PARAM_PRODUCT: str = "ArmorCode.Product"
PARAM_SUB_PRODUCTS: str = "ArmorCode.SubProducts"
PARAM_ENV: str = "ArmorCode.Env"
PARAM_GATE_RESULT: str = "ArmorCode.GateResult"
MARKER_FILE: str = "armorcode-gate-used.txt"
OUTCOME_FILE: str = "armorcode-gate.json"

# Build-log banners printed by the gate (also matched by the log detector)
BANNER_START: str = "=== Starting ArmorCode Release Gate Check ==="
BANNER_STATUS: str = "=== ArmorCode Release Gate ==="

# Build step identifiers
GATE_STEP_CLASS: str = "ArmorCodeReleaseGateBuilder"
GATE_STEP_SYMBOL: str = "armorcodeReleaseGate"
