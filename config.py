"""
Configuration settings for the StraightBar system.
Contains constants for geometry, smoothing, stream recovery, GPS and display.

Organised into logical sections:
1. Geometry (earth model, reference line)
2. Smoothing & Display Scale (EMA factor, light-bar range)
3. Stream Recovery (watch options, backoff, watchdog)
4. Hardware - GPS (serial, timeouts, accuracy estimate)
5. Replay (NMEA log playback)
6. Display & UI (resolution, colours, frame rate)

Everything here is session-only. Command line flags in main.py override the
source and display values for a single run; nothing is persisted.
"""


# ==============================================================================
# APPLICATION VERSION
# ==============================================================================
# Format: MAJOR.MINOR.PATCH
APP_VERSION = "0.3.0"


# ##############################################################################
#
#                              1. GEOMETRY
#
# ##############################################################################

# Mean earth radius used by the equirectangular projection (metres)
EARTH_RADIUS_M = 6371000.0


# ##############################################################################
#
#                     2. SMOOTHING & DISPLAY SCALE
#
# ##############################################################################

# EMA smoothing factor k: smoothed = k * previous + (1 - k) * raw
SMOOTHING_FACTOR_DEFAULT = 0.5
SMOOTHING_FACTOR_MIN = 0.0
SMOOTHING_FACTOR_MAX = 0.95
SMOOTHING_FACTOR_STEP = 0.05  # Per key press in the display

# Light-bar half width in metres (cursor hits the edge at +/- this value)
VISUAL_RANGE_DEFAULT_M = 15.0
VISUAL_RANGE_MIN_M = 1.0
VISUAL_RANGE_MAX_M = 50.0
VISUAL_RANGE_STEP_M = 1.0


# ##############################################################################
#
#                          3. STREAM RECOVERY
#
# ##############################################################################

# ==============================================================================
# WATCH OPTIONS (requested from the positioning source)
# ==============================================================================

WATCH_HIGH_ACCURACY = True
WATCH_MAXIMUM_AGE_S = 5.0  # Oldest cached fix accepted on subscribe
WATCH_TIMEOUT_S = 20.0  # Max wait for a fix before the source reports TIMEOUT

# ==============================================================================
# RESTART BACKOFF
# ==============================================================================
# Delay grows 3.0 -> 4.5 -> 6.75 ... capped at 30 s.
# Only a full stop/start by the user resets it.

RETRY_BASE_DELAY_S = 3.0
RETRY_MULTIPLIER = 1.5
RETRY_MAX_DELAY_S = 30.0

# ==============================================================================
# WATCHDOG
# ==============================================================================

WATCHDOG_POLL_INTERVAL_S = 5.0
WATCHDOG_STALE_AFTER_S = 15.0  # No sample for longer than this forces a restart

# ==============================================================================
# UPDATE RATE / POINT CAPTURE
# ==============================================================================

# Denominator floor for the Hz estimate: never report below 1 sample per 5 s
UPDATE_RATE_MAX_INTERVAL_S = 5.0

# Marking A or B uses the last accepted fix if it is at most this old
POINT_CAPTURE_MAX_AGE_S = 15.0

# Feed inbox depth (sample/error events waiting for the main loop)
FEED_QUEUE_DEPTH = 32


# ##############################################################################
#
#                          4. HARDWARE - GPS
#
# ##############################################################################

GPS_SERIAL_PORT = "/dev/ttyS0"
GPS_BAUD_RATE = 9600  # MTK3339 factory default
GPS_SERIAL_TIMEOUT_S = 0.15  # Read timeout for serial port (seconds)

# Consecutive read errors before the feed reports POSITION_UNAVAILABLE
GPS_MAX_CONSECUTIVE_ERRORS = 10

# User equivalent range error (metres); accuracy radius = HDOP * UERE
GPS_UERE_M = 5.0


# ##############################################################################
#
#                               5. REPLAY
#
# ##############################################################################

# RMC sentences replayed per second when no rate is given on the command line
REPLAY_RATE_HZ = 1.0


# ##############################################################################
#
#                            6. DISPLAY & UI
#
# ##############################################################################

DISPLAY_WIDTH = 800
DISPLAY_HEIGHT = 480
FPS_TARGET = 60

# Colours (RGB)
BACKGROUND_COLOUR = (0, 0, 0)
TEXT_COLOUR = (255, 255, 255)
DIM_TEXT_COLOUR = (160, 160, 160)
ERROR_TEXT_COLOUR = (255, 80, 80)
BAR_BACKGROUND_COLOUR = (40, 40, 40)
BAR_BORDER_COLOUR = (100, 100, 100)
CENTRE_LINE_COLOUR = (200, 200, 200)
CURSOR_COLOUR = (255, 200, 0)
