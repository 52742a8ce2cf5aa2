from __future__ import annotations

import logging
import math
from typing import Awaitable, Callable, Optional

from aiohttp import web

from artifact_tracker.core.errors import (
    AggregationTimeout,
    InvalidQueryError,
    NoDataAvailable,
    UpstreamAuthError,
    UpstreamError,
    UpstreamNotFound,
    UpstreamRateLimited,
)
from artifact_tracker.core.timeutils import utc_now

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

TIMEOUT_MESSAGE = "Request processing timed out. Please try again with fewer filters or a smaller dataset."
NO_DATA_MESSAGE = "No artifact data is available right now. Please try again later."
DEFAULT_FAILURE_MESSAGE = "Failed to process the request. Please try again later."

# Route name -> message shown for failures that carry no useful detail.
FAILURE_MESSAGES = {
    "artifacts": "Failed to retrieve artifacts data. Please try again later.",
    "artifact_issues": "Failed to retrieve artifact issues. Please try again later.",
    "artifact_changes": "Failed to fetch changelog. Please try again later.",
}


def error_response(status: int, message: str, *, headers: Optional[dict[str, str]] = None) -> web.Response:
    return web.json_response({"error": message}, status=status, headers=headers)


def _retry_after_header(error: UpstreamRateLimited) -> Optional[dict[str, str]]:
    if error.retry_after is None:
        return None
    seconds = max(0, math.ceil((error.retry_after - utc_now()).total_seconds()))
    return {"Retry-After": str(seconds)}


def _failure_message(request: web.Request) -> str:
    route = request.match_info.route
    return FAILURE_MESSAGES.get(route.name or "", DEFAULT_FAILURE_MESSAGE)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Translate the exception taxonomy into JSON error responses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except InvalidQueryError as e:
        return error_response(400, str(e))
    except AggregationTimeout as e:
        logger.warning("Request timed out waiting for upstream data. path=%s error=%s", request.path, e)
        return error_response(504, TIMEOUT_MESSAGE)
    except UpstreamAuthError as e:
        logger.error("Upstream rejected our credentials. path=%s error=%s", request.path, e)
        return error_response(401, str(e))
    except UpstreamRateLimited as e:
        logger.warning("Upstream rate limit exceeded. path=%s retry_after=%s", request.path, e.retry_after)
        return error_response(429, str(e), headers=_retry_after_header(e))
    except UpstreamNotFound as e:
        return error_response(404, str(e))
    except NoDataAvailable as e:
        logger.error("No data available to answer the request. path=%s error=%s", request.path, e)
        return error_response(503, NO_DATA_MESSAGE)
    except UpstreamError as e:
        logger.warning("Upstream request failed. path=%s error=%s", request.path, e)
        return error_response(500, _failure_message(request))
    except Exception:
        logger.exception("Unhandled error while serving request. path=%s", request.path)
        return error_response(500, _failure_message(request))
