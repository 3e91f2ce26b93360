"""
Request Timing Middleware
Logs the time taken for each HTTP request.
"""

import logging
import time
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)

SKIPPED_PREFIXES = ("/static/", "/media/", "/admin/")


class RequestTimingMiddleware(MiddlewareMixin):
    """
    Logs one line per request:
    METHOD /path/ - XXX.XXms - STATUS
    Messaging requests are tagged SEND (POST) or LOAD (GET).
    """

    def process_request(self, request):
        request._start_time = time.monotonic()

    def process_response(self, request, response):
        start = getattr(request, "_start_time", None)
        if start is None or request.path.startswith(SKIPPED_PREFIXES):
            return response

        duration_ms = (time.monotonic() - start) * 1000
        action = ""
        if request.path.startswith("/conversations/"):
            action = " SEND" if request.method == "POST" else " LOAD"

        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            f"{request.method:4s} {request.path:45s} {duration_ms:7.2f}ms {response.status_code}{action}",
        )
        return response
