"""Shared tracking constants.

Centralizes the values the live metrics pipeline depends on so we can
document and adjust them in one place.
"""

# Mean Earth radius used by the haversine distance (km)
EARTH_RADIUS_KM = 6371.0

# Consecutive fixes further apart than this are GPS jumps, not riding (km)
GPS_JUMP_THRESHOLD_KM = 0.1

# Reported speeds arrive in m/s; everything we show is km/h
MPS_TO_KMH = 3.6

SECONDS_PER_HOUR = 3600

# Simulated cadence model (rpm)
CADENCE_MIN_SPEED_KMH = 5.0
CADENCE_BASE_RPM = 60
CADENCE_MAX_VARIATION_RPM = 40
CADENCE_SPEED_FACTOR = 2
CADENCE_JITTER_RPM = 5

DEFAULT_RIDE_TITLE = "Untitled Ride"

# Storage keys of the offline store
CURRENT_RIDE_KEY = "current_ride"
RIDES_KEY = "rides"
CURRENT_USER_KEY = "current_user"
