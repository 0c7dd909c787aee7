"""Application constants.

This module contains magic strings and numbers used throughout the application.
Centralizing these values makes them easier to maintain and modify.
"""

# Session Code Configuration
# Session codes are short uppercase alphanumeric strings read aloud in class
SESSION_CODE_LENGTH = 6
SESSION_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

# Verification Challenge timings (seconds)
# The challenge opens 10s after entering the focus view and then
# gives the participant 30s to re-enter the session code.
CHALLENGE_OPEN_DELAY_SECONDS = 10
CHALLENGE_WINDOW_SECONDS = 30
CHALLENGE_MAX_ATTEMPTS = 3

# Countdown cadence (1 Hz)
COUNTDOWN_INTERVAL_SECONDS = 1.0

# Geodesy
EARTH_RADIUS_METERS = 6_371_000

# Recent attendance lists show the latest N records
RECENT_ATTENDANCE_LIMIT = 5

# Store collections
SESSIONS_COLLECTION = "sessions"
PARTICIPANTS_COLLECTION = "participants"
ATTENDANCE_COLLECTION = "attendance"

# JWT Token Configuration
# Token expiration time in minutes (8 hours)
ACCESS_TOKEN_EXPIRE_MINUTES = 480
