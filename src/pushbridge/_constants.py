"""Internal constants shared across the library."""

USER_AGENT = "pushbridge/1"
DEFAULT_API_KEY_HEADER = "x-goog-api-key"
DEFAULT_PLATFORM = "apns"

# The platform SDK needs a moment after the OS token is handed over
# before a backend token can be requested.
DEFAULT_EXCHANGE_DELAY = 0.5
DEFAULT_TOKEN_TIMEOUT = 30.0
DEFAULT_CREDENTIAL_TIMEOUT = 60.0
DEFAULT_HTTP_TIMEOUT = 15.0

# HTTP statuses that mean "this credential will never be accepted".
REJECTED_STATUS_CODES: frozenset[int] = frozenset({400, 401, 403, 404})
