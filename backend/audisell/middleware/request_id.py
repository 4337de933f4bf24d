import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from audisell.core.logging import request_id_var

HEADER = "X-Request-ID"
MAX_INCOMING_LENGTH = 128


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id (the load balancer's X-Request-ID when sent).

    The id lands on ``request.state``, in every log line of the request and
    on the response header.
    """

    async def dispatch(self, request: Request, call_next):
        incoming = (request.headers.get(HEADER) or "").strip()
        rid = incoming[:MAX_INCOMING_LENGTH] or uuid.uuid4().hex
        request.state.request_id = rid
        token = request_id_var.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers[HEADER] = rid
        return response
