"""Stable failure codes for fetch, parse and store operations.

Used by: rss_fetch, sync, repo, logging, sync_runs table, /runs/latest endpoint.
"""

SOURCE_UNAVAILABLE = "SOURCE_UNAVAILABLE"
FETCH_TIMEOUT = "FETCH_TIMEOUT"
FETCH_TRANSIENT = "FETCH_TRANSIENT"
RATE_LIMITED = "RATE_LIMITED"
FETCH_PERMANENT = "FETCH_PERMANENT"
PARSE_ERROR = "PARSE_ERROR"

  # Store codes
STORE_WRITE_ERROR = "STORE_WRITE_ERROR"    # Generation swap rolled back
STORE_READ_ERROR = "STORE_READ_ERROR"      # Read path degraded to empty result
