"""HTTP constants for the fetch layer."""

# HTTP Status Code Ranges
HTTP_STATUS_OK_MIN = 200
HTTP_STATUS_OK_MAX = 300
HTTP_STATUS_NOT_MODIFIED = 304

# Response Size Limits
DEFAULT_MAX_RESPONSE_SIZE_BYTES = 2 * 1024 * 1024  # 2 MB

# Chunk size for streaming reads
DEFAULT_CHUNK_SIZE = 8192

# Fetches must fail fast; refresh retries on the next tick.
DEFAULT_TIMEOUT_SECONDS = 10.0

# Header carrying the backend API key
API_KEY_HEADER = "X-Api-Key"
