"""Request correlation and payload guards for the store API.

``RequestIdMiddleware`` gives every request an identifier: the inbound
``X-Request-ID`` header when the caller (storefront, payment provider)
sends one, a fresh UUID4 otherwise. The id is exposed on
``request.request_id``, published through ``REQUEST_ID_CTX`` for code
that has no request object (log filters, the gateway HTTP client) and
echoed back on the response.

``ApiSizeLimitMiddleware`` rejects oversized bodies on ``/api/`` before
they reach checkout or webhook parsing.
"""

import contextvars
import os
import uuid

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))


class RequestIdMiddleware(MiddlewareMixin):
    """Attach a correlation id to the request, the context and the response."""

    META_KEY = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.META_KEY) or str(uuid.uuid4())
        request.request_id = rid
        request._request_id_token = REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        response[self.RESPONSE_HEADER] = getattr(request, "request_id", REQUEST_ID_CTX.get())
        token = getattr(request, "_request_id_token", None)
        if token is not None:
            # worker threads are reused; don't leak the id into the next request
            REQUEST_ID_CTX.reset(token)
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    """Answer 413 for ``/api/`` requests whose declared body exceeds the cap."""

    def process_request(self, request):
        if not request.path.startswith("/api/"):
            return None
        clen = request.META.get("CONTENT_LENGTH")
        if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
            return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
        return None
