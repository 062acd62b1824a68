"""Protocol and implementation constants."""

# Specification constants. Times are in seconds.
REKEY_AFTER_MESSAGES = 1 << 60
REJECT_AFTER_MESSAGES = (1 << 64) - (1 << 13) - 1
REKEY_AFTER_TIME = 120.0
REKEY_ATTEMPT_TIME = 90.0
REKEY_TIMEOUT = 5.0
MAX_TIMER_HANDSHAKES = 90 // 5  # REKEY_ATTEMPT_TIME / REKEY_TIMEOUT
REKEY_TIMEOUT_JITTER_MAX_MS = 334
REJECT_AFTER_TIME = 180.0
KEEPALIVE_TIMEOUT = 10.0
COOKIE_REFRESH_TIME = 120.0
HANDSHAKE_INITIATION_RATE = 1.0 / 50
PADDING_MULTIPLE = 16

# Implementation constants.
UNDER_LOAD_AFTER_TIME = 1.0  # how long the device remains under load once detected
MAX_PEERS = 1 << 16  # maximum number of configured peers