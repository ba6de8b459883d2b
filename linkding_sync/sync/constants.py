"""Constants for Linkding synchronization."""

DEFAULT_PAGE_SIZE = 100
DEFAULT_LOCK_NAME = "linkding-sync"

# Asset statuses reported by the Linkding asset index.
REMOTE_ASSET_COMPLETE = "complete"

# Retry defaults for failed batches (the HTTP client itself never retries).
DEFAULT_MAX_RETRIES = 4
DEFAULT_BASE_DELAY_SECONDS = 5.0
DEFAULT_MAX_DELAY_SECONDS = 300.0
DEFAULT_BACKOFF_FACTOR = 3.0

DEFAULT_KEEPALIVE_INTERVAL_SECONDS = 10.0
DEFAULT_LEASE_SECONDS = 60.0

# Keyset page size when walking bookmarks flagged for asset sync.
ASSET_WORK_PAGE_SIZE = 50
