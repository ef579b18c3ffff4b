"""
Limit Behavior Engine — Configuration
======================================
All constants, thresholds, simulation parameters and storage
quotas for the limit behavior dashboard.

The engine thresholds here are only defaults: the evaluator takes
an explicit EngineConfig so they can be varied per call.
"""

import os

# ═══════════════════════════════════════════════════════════════
# ENGINE THRESHOLDS
# ═══════════════════════════════════════════════════════════════

STABLE_LIMIT = 0.6                # below → STABLE
BOUNDARY_LIMIT = 0.85             # [0.6, 0.85) → BOUNDARY_ZONE
HALT_LIMIT = 1.0                  # [0.85, 1.0) → UNSTABLE, ≥ 1.0 → HALT

# Extra drop required to leave a higher state
HYSTERESIS_BUFFER = 0.1

# Effective energy = energy + trend·TREND_FACTOR + |noise|·NOISE_FACTOR
TREND_FACTOR = 0.5                # half-step look-ahead
NOISE_FACTOR = 0.5                # worst-case noise margin


class SystemState:
    """Wire names of the four engine states."""
    STABLE             = "STABLE"
    BOUNDARY_ZONE      = "BOUNDARY_ZONE"
    UNSTABLE           = "UNSTABLE"
    SYSTEM_SHOULD_HALT = "SYSTEM_SHOULD_HALT"


# Severity order, least → most severe
STATE_ORDER = [
    SystemState.STABLE,
    SystemState.BOUNDARY_ZONE,
    SystemState.UNSTABLE,
    SystemState.SYSTEM_SHOULD_HALT,
]

INITIAL_STATE = SystemState.STABLE

STATE_CATALOG = {
    SystemState.STABLE: {
        'severity': 0,
        'label': 'Stable',
        'color': '#22c55e',  # green
        'desc': 'System Nominal',
    },
    SystemState.BOUNDARY_ZONE: {
        'severity': 1,
        'label': 'Boundary Zone',
        'color': '#eab308',  # yellow
        'desc': 'Approaching Limits',
    },
    SystemState.UNSTABLE: {
        'severity': 2,
        'label': 'Unstable',
        'color': '#f97316',  # orange
        'desc': 'High Instability Detected',
    },
    SystemState.SYSTEM_SHOULD_HALT: {
        'severity': 3,
        'label': 'System Should Halt',
        'color': '#ef4444',  # red
        'desc': 'CRITICAL LIMIT BREACH',
    },
}

# ═══════════════════════════════════════════════════════════════
# SIMULATION PARAMETERS
# ═══════════════════════════════════════════════════════════════

TICK_INTERVAL = 0.2               # seconds between ticks (5 Hz)
DRIFT_FACTOR = 0.05               # drift added per tick = trend × this
JITTER_FACTOR = 0.2               # jitter = (u − 0.5) × noise × this
LIVE_HISTORY_LEN = 100            # points kept for the live chart

DEFAULT_ENERGY = 0.5
DEFAULT_TREND = 0.0
DEFAULT_NOISE = 0.1

PARAM_RANGES = {
    'energy': {'min': 0.0, 'max': 1.5},
    'trend':  {'min': -0.5, 'max': 0.5},
    'noise':  {'min': 0.0, 'max': 1.0},
}

# Stored with every run as its "configuration" column
DEFAULT_RUN_CONFIGURATION = {
    'maxEnergy': 1.5,
    'boundaryThreshold': 0.8,
    'haltThreshold': 1.0,
}

# ═══════════════════════════════════════════════════════════════
# STORAGE & HOUSEKEEPING
# ═══════════════════════════════════════════════════════════════

DEFAULT_DATABASE_URL = 'sqlite:///sqlite.db'
SQLITE_BUSY_TIMEOUT_MS = 30000

MAX_DB_SIZE_BYTES = 100 * 1024 * 1024   # 100 MB
MAX_RUNS = 1000
MAX_STEPS_PER_RUN = 10000

HOUSEKEEPING_INTERVAL = 60.0      # seconds between quota passes

# ═══════════════════════════════════════════════════════════════
# DASHBOARD
# ═══════════════════════════════════════════════════════════════

DASHBOARD_HOST = '0.0.0.0'
DASHBOARD_PORT = 5001
SECRET_KEY = os.environ.get('SECRET_KEY', 'limit-behavior-engine')


def database_url(raw=None):
    """
    Normalize a database location to a SQLAlchemy URL.

    Accepts a full URL, the ``file:path`` form, or a bare path.
    Falls back to $DATABASE_URL and then to ./sqlite.db.
    """
    if raw is None:
        raw = os.environ.get('DATABASE_URL', '')
    raw = raw.strip()
    if not raw:
        return DEFAULT_DATABASE_URL
    if '://' in raw:
        return raw
    if raw.startswith('file:'):
        raw = raw[len('file:'):]
    return f"sqlite:///{raw}"
