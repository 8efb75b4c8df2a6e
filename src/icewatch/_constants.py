"""Internal constants shared across the library."""

from __future__ import annotations

USER_AGENT = "icewatch-python"

REST_PATH = "/rest/v1"
REALTIME_PATH = "/realtime/v1/websocket"
REALTIME_VSN = "1.0.0"

#: PostgREST has no unfiltered DELETE; bulk clears match every row whose id
#: differs from the nil UUID.
NIL_UUID = "00000000-0000-0000-0000-000000000000"

#: Number of detections loaded initially and kept in the local view.
DEFAULT_DETECTION_LIMIT = 50

# ------------------------------------------------------------------
# Phoenix channel protocol
# ------------------------------------------------------------------

PHX_JOIN = "phx_join"
PHX_LEAVE = "phx_leave"
PHX_REPLY = "phx_reply"
PHX_ERROR = "phx_error"
PHX_CLOSE = "phx_close"
PHX_HEARTBEAT = "heartbeat"
PHX_TOPIC = "phoenix"
POSTGRES_CHANGES = "postgres_changes"

# ------------------------------------------------------------------
# Validation harness tags
# ------------------------------------------------------------------

RESPONSE_TAG = "TEST-"
MULTI_ALERT_TAG = "MULTI-TEST-"
NETWORK_BEFORE_TAG = "NET-TEST-BEFORE-"
NETWORK_AFTER_TAG = "NET-TEST-AFTER-"

#: Reference point used for harness detections (New York).
HARNESS_LATITUDE = 40.7128
HARNESS_LONGITUDE = -74.006
