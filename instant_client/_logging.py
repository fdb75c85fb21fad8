# =============================================================================
# Instant Python Client -- Package Logger
# =============================================================================
#
# One logger for the whole package.  Handlers are the application's job.
# =============================================================================

import logging

logger = logging.getLogger("instant_client")
logger.addHandler(logging.NullHandler())
