"""
Keystone HTTP Error Classifier

Collapses transport, interceptor and HTTP failures into the three error
kinds consumers see.
"""

import json
from typing import Any, Optional

from .abort import CancellationToken
from .errors import APIError, NetworkError, RequestCancelledError, ServerError
from .transport import TransportError
from .types import TransportResponse


def parse_json_body(body: bytes) -> Any:
    """Best-effort JSON decode; empty or non-JSON bodies yield ``{}``."""
    if not body:
        return {}
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return {}


def classify_response(response: TransportResponse) -> ServerError:
    """Build the server error for a completed, non-successful exchange."""
    payload = parse_json_body(response.body)
    message = None
    if isinstance(payload, dict):
        message = payload.get("message")
    return ServerError(
        message or f"Server error: {response.status_code}",
        response.status_code,
        payload,
    )


def classify_exception(
    error: BaseException,
    token: Optional[CancellationToken] = None,
) -> APIError:
    """
    Classify an exception raised while preparing or sending a request.

    The call's own token decides between cancelled and network: an abort
    and a dropped connection reach us as the same TransportError.
    """
    if token is not None and token.cancelled:
        return RequestCancelledError()
    if isinstance(error, APIError):
        return error
    if isinstance(error, TransportError):
        if error.aborted:
            return RequestCancelledError()
        return NetworkError(f"Network error: {error.message}")
    return NetworkError(str(error) or "An unexpected error occurred")
