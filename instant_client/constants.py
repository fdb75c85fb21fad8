# =============================================================================
# Instant Python Client -- Protocol Constants
# =============================================================================
#
# Op names and hyphenated field names match the InstantDB session protocol.
# =============================================================================

import os

CLIENT_NAME = "instant-python"

# -- Endpoints -----------------------------------------------------------------

DEFAULT_BASE_URL = os.environ.get("INSTANT_BASE_URL", "wss://api.instantdb.com")
SESSION_PATH = "/runtime/session"

# -- Timing (seconds) --------------------------------------------------------

CONNECTION_TIMEOUT = 10.0
READY_TIMEOUT = 10.0
CLOSE_TIMEOUT = 5.0

# -- Reconnection -------------------------------------------------------------

RECONNECT_BASE_DELAY = 1.0
RECONNECT_MAX_DELAY = 30.0
RECONNECT_MAX_ATTEMPTS = -1  # -1 = infinite
RECONNECT_FACTOR = 1.5
RECONNECT_ABSOLUTE_CAP = 300.0  # 5 minutes

# -- Messages ------------------------------------------------------------------

MAX_MESSAGE_SIZE = 16 * 1_048_576  # 16 MB, query snapshots can be large

# -- Outbound ops --------------------------------------------------------------

OP_INIT = "init"
OP_ADD_QUERY = "add-query"
OP_REMOVE_QUERY = "remove-query"
OP_TRANSACT = "transact"

# -- Inbound ops ---------------------------------------------------------------

OP_INIT_OK = "init-ok"
OP_ADD_QUERY_OK = "add-query-ok"
OP_ADD_QUERY_EXISTS = "add-query-exists"
OP_REMOVE_QUERY_OK = "remove-query-ok"
OP_REFRESH_OK = "refresh-ok"
OP_TRANSACT_OK = "transact-ok"
OP_ERROR = "error"

# -- Envelope keys -------------------------------------------------------------

KEY_OP = "op"
KEY_CLIENT_EVENT_ID = "client-event-id"

# -- Result body keys ----------------------------------------------------------

KEY_DATA = "data"
KEY_DATALOG_RESULT = "datalog-result"
KEY_JOIN_ROWS = "join-rows"
KEY_PAGE_INFO = "page-info"
KEY_START_CURSOR = "start-cursor"
KEY_END_CURSOR = "end-cursor"
KEY_HAS_NEXT_PAGE = "has-next-page?"
KEY_HAS_PREVIOUS_PAGE = "has-previous-page?"
KEY_INSTAQL_QUERY = "instaql-query"
KEY_INSTAQL_RESULT = "instaql-result"

# -- Query modifiers -----------------------------------------------------------

MODIFIERS_KEY = "$"

# -- Transactions --------------------------------------------------------------

LOOKUP_PREFIX = "lookup__"

# -- WebSocket close codes -----------------------------------------------------

WS_CLOSE_NORMAL = 1000
WS_CLOSE_GOING_AWAY = 1001
WS_CLOSE_POLICY_VIOLATION = 1008
