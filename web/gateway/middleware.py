"""Gateway middleware: request correlation, access logging and size limits.

``RequestIdMiddleware`` gives every incoming request an identifier. It reuses
the client's ``X-Request-Id`` header when present and generates a UUIDv4
otherwise. The id is stored on the request and in ``REQUEST_ID_CTX`` so
downstream code (HTTP adapters, log filters) can read it without passing it
around, and it is echoed back in the ``X-Request-ID`` response header.

``ApiSizeLimitMiddleware`` rejects oversized bodies on ``/api/`` routes before
they reach a view.
"""

import contextvars
import logging
import uuid

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
logger = logging.getLogger("gateway")


class RequestIdMiddleware(MiddlewareMixin):
    """Set a per-request identifier and log each handled request.

    Attributes:
        HEADER (str): Incoming header name in Django's ``request.META`` casing.
        RESPONSE_HEADER (str): Header returned on responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        """Echo the request id and emit one structured access log line."""
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        logger.info(
            "request handled",
            extra={"path": request.path, "method": request.method, "status": response.status_code},
        )
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    """Answer 413 for ``/api/`` requests larger than ``API_MAX_BYTES``."""

    def process_request(self, request):
        if not request.path.startswith("/api/"):
            return None
        limit = getattr(settings, "API_MAX_BYTES", 1024 * 1024)
        clen = request.META.get("CONTENT_LENGTH")
        if clen and clen.isdigit() and int(clen) > limit:
            return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
        return None
