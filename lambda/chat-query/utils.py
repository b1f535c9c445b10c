"""
Utility functions for the chat-query Lambda.

API Gateway response building and JSON serialization of store documents.
"""

import base64
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from bson import ObjectId

from models import ErrorResponse


# ============================================================================
# CORS
# ============================================================================

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}

JSON_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Content-Type": "application/json",
}


# ============================================================================
# Serialization
# ============================================================================


def json_default(value: Any) -> Any:
    """
    json.dumps hook for values MongoDB hands back.

    Args:
        value: Object json cannot serialize natively

    Returns:
        A JSON-compatible representation

    Raises:
        TypeError: If the value has no known representation
    """
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(payload: Any) -> str:
    return json.dumps(payload, default=json_default)


# ============================================================================
# Responses
# ============================================================================


def build_response(status_code: int, body: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Build an API Gateway proxy response with CORS headers.

    Args:
        status_code: HTTP status code
        body: JSON body, or None for an empty body

    Returns:
        dict: API Gateway response object
    """
    return {
        "statusCode": status_code,
        "headers": dict(JSON_HEADERS),
        "body": to_json(body) if body is not None else "",
    }


def build_preflight_response() -> Dict[str, Any]:
    """Response for an OPTIONS request: permissive CORS headers, no body."""
    return {
        "statusCode": 200,
        "headers": dict(PREFLIGHT_HEADERS),
        "body": "",
    }


def build_error_response(status_code: int, error: str, details: Optional[str] = None) -> Dict[str, Any]:
    """Build an error response; details is omitted when not given."""
    body = ErrorResponse(error=error, details=details)
    return build_response(status_code, body.model_dump(exclude_none=True))


def get_http_method(event: Dict[str, Any]) -> str:
    """Read the HTTP method from a REST (v1) or HTTP API (v2) proxy event."""
    method = event.get("httpMethod")
    if not method:
        method = event.get("requestContext", {}).get("http", {}).get("method", "")
    return (method or "").upper()


def get_raw_body(event: Dict[str, Any]) -> str:
    """Return the request body as text, decoding base64 bodies."""
    body = event.get("body")
    if body is None:
        return ""
    if event.get("isBase64Encoded"):
        return base64.b64decode(body).decode("utf-8")
    return body
