from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

CALL_ID_HEADERS = ("X-Correlation-ID", "Nav-Call-Id", "X-Request-ID")


def get_call_id(request: Request) -> str:
    """Correlation id for the current request, as set by ``CallIdMiddleware``."""
    return getattr(request.state, "call_id", None) or str(uuid4())


class CallIdMiddleware(BaseHTTPMiddleware):
    """
    Attaches a correlation id to every request.

    The first of the known correlation headers sent by the client is reused;
    otherwise a new id is generated. The id is echoed on the response so the
    frontend can quote it in support requests.
    """

    async def dispatch(self, request: Request, call_next):
        call_id = next((request.headers[name] for name in CALL_ID_HEADERS if request.headers.get(name)), None)
        request.state.call_id = call_id or f"generated-{uuid4()}"

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = request.state.call_id
        return response
