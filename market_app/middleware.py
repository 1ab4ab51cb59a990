"""
Request Timing Middleware
Logs the time taken for each HTTP request.
"""

import logging
import time

from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger("market_app.requests")

SKIPPED_PREFIXES = ("/static/", "/media/", "/admin/")


class RequestTimingMiddleware(MiddlewareMixin):
    """
    Middleware that logs request timing information.

    Output format:
    METHOD /path/ XXX.XXms STATUS
    Slow requests (over SLOW_REQUEST_MS) are logged as warnings.
    """

    SLOW_REQUEST_MS = 1000

    def process_request(self, request):
        """Store the start time when request begins."""
        request._start_time = time.monotonic()

    def process_response(self, request, response):
        """Calculate and log the request duration."""
        if not hasattr(request, "_start_time"):
            return response

        path = request.path
        # Skip static files and admin requests for cleaner output
        if path.startswith(SKIPPED_PREFIXES):
            return response

        duration_ms = (time.monotonic() - request._start_time) * 1000
        level = logging.WARNING if duration_ms >= self.SLOW_REQUEST_MS else logging.INFO
        logger.log(
            level,
            "%-4s %s %.2fms %s",
            request.method,
            path,
            duration_ms,
            response.status_code,
        )
        return response
