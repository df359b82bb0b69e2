"""
Drone Dispatch Configuration
Defines operational parameters, battery policy, simulation rates and API settings
"""

import os

# ============================================================================
# GEOMETRY
# ============================================================================

EARTH_RADIUS_KM = 6371.0  # mean Earth radius used by haversine and projection

# ============================================================================
# BATTERY POLICY
# ============================================================================

MAX_BATTERY_PERCENT = 100
MIN_BATTERY_PERCENT = 0

# Fixed 20% inflation over the naive linear consumption estimate
BATTERY_SAFETY_MARGIN = 1.2

# Battery is spent at flight creation. When True the feasibility check also
# subtracts reservedBatteryPercent from the available charge.
SUBTRACT_RESERVED_BATTERY = False

# ============================================================================
# PRIORITY QUEUE
# ============================================================================
# Accepted priority inputs (English and Portuguese) -> canonical tier name

PRIORITY_ALIASES = {
    'low': 'low',
    'baixa': 'low',
    'normal': 'normal',
    'medium': 'medium',
    'media': 'medium',
    'média': 'medium',
    'high': 'high',
    'alta': 'high',
}

# Sort weight per canonical tier (higher = scheduled first)
PRIORITY_WEIGHTS = {
    'low': 1,
    'normal': 1,
    'medium': 2,
    'high': 3,
}

DEFAULT_PRIORITY = 'normal'

# ============================================================================
# IDENTIFIERS
# ============================================================================

DRONE_ID_PREFIX = "drone"
DELIVERY_ID_PREFIX = "delivery"
FLIGHT_ID_PREFIX = "flight"
DISPLAY_ID_TEMPLATE = "Service order {order_number}"

# Archive reasons (suffixed with ":<id>")
REASON_DRONE_DELETED = "drone-deleted"
REASON_DELIVERY_CANCELLED = "delivery-cancelled"
REASON_DELIVERY_DELETED = "delivery-deleted"
REASON_MANUAL_DELETE = "manual-delete"
REASON_RESCHEDULED = "rescheduled"

# ============================================================================
# SIMULATION PARAMETERS
# ============================================================================

SIMULATION_TICK_SECONDS = 5.0     # clock period
SIMULATION_RECHARGE_STEP = 2      # battery percent gained per tick while idle
DRONE_CRUISE_SPEED_KMH = 36.0     # 10 m/s, used for ETA and progress
DISTANCE_DECIMALS = 3             # flight distance rounding

# Complete flights automatically once progress reaches 1.0
AUTO_COMPLETE_FLIGHTS = os.environ.get("FLEET_AUTO_COMPLETE", "0") == "1"

# ============================================================================
# STORAGE
# ============================================================================

DB_PATH = os.environ.get("FLEET_DB_PATH", "fleet_db.json")

# ============================================================================
# API CONFIGURATION
# ============================================================================

API_HOST = "127.0.0.1"
API_PORT = int(os.environ.get("FLEET_API_PORT", "4000"))
CORS_ORIGINS = ["*"]  # Allow all origins for development

# ============================================================================
# LOGGING
# ============================================================================

LOG_LEVEL = os.environ.get("FLEET_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
