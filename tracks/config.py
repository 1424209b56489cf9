"""Tunables for the track pipeline, read once from the environment."""

import os

from dotenv import load_dotenv

load_dotenv()

CHUNK_SIZE_SECONDS = int(os.getenv("TRACK_CHUNK_SIZE_SECONDS", str(24 * 3600)))
CHUNK_BUFFER_SECONDS = int(os.getenv("TRACK_CHUNK_BUFFER_SECONDS", str(6 * 3600)))

SESSION_TTL_SECONDS = int(os.getenv("TRACK_SESSION_TTL_SECONDS", str(24 * 3600)))
RECALCULATION_STATUS_TTL_SECONDS = int(
    os.getenv("TRACK_RECALCULATION_STATUS_TTL_SECONDS", str(24 * 3600))
)

DEBOUNCE_SECONDS = int(os.getenv("TRACK_DEBOUNCE_SECONDS", "30"))
BUFFER_TTL_SECONDS = int(os.getenv("TRACK_BUFFER_TTL_SECONDS", str(7 * 24 * 3600)))

BOUNDARY_MIN_DELAY_SECONDS = int(os.getenv("TRACK_BOUNDARY_MIN_DELAY_SECONDS", "300"))
BOUNDARY_DELAY_PER_CHUNK_SECONDS = int(
    os.getenv("TRACK_BOUNDARY_DELAY_PER_CHUNK_SECONDS", "30")
)
BOUNDARY_MAX_RESCHEDULES = int(os.getenv("TRACK_BOUNDARY_MAX_RESCHEDULES", "3"))
BOUNDARY_WINDOW_SECONDS = int(os.getenv("TRACK_BOUNDARY_WINDOW_SECONDS", "1800"))
BOUNDARY_MAX_GAP_SECONDS = int(os.getenv("TRACK_BOUNDARY_MAX_GAP_SECONDS", "3600"))
BOUNDARY_LOOKBACK_SECONDS = int(os.getenv("TRACK_BOUNDARY_LOOKBACK_SECONDS", "3600"))

INCREMENTAL_GRACE_MINUTES = int(os.getenv("TRACK_INCREMENTAL_GRACE_MINUTES", "5"))

DEFAULT_METERS_BETWEEN_ROUTES = 500
DEFAULT_MINUTES_BETWEEN_ROUTES = 60
