"""
Shared helpers for the JSON blueprints.

Services live in app.config (set up by create_app); these helpers fetch
them and parse request bodies into the canonical error taxonomy so the
app-level error handlers can translate failures into JSON responses.
"""

from __future__ import annotations

from typing import Any, Dict

import bleach
from flask import current_app, request

from core.exceptions import InvalidSpec, ServiceUnavailableError


def get_service(key: str, label: str) -> Any:
    """
    Fetch a service stored in app.config.

    Raises:
        ServiceUnavailableError: Service not configured (HTTP 503)
    """
    service = current_app.config.get(key)
    if service is None:
        raise ServiceUnavailableError(label, f"{label} is not configured")
    return service


def json_body(required: bool = True) -> Dict[str, Any]:
    """
    Parse the request body as a JSON object.

    Raises:
        InvalidSpec: Body missing or not a JSON object
    """
    data = request.get_json(silent=True)
    if data is None:
        if required:
            raise InvalidSpec("Request body must be a JSON object")
        return {}
    if not isinstance(data, dict):
        raise InvalidSpec("Request body must be a JSON object")
    return data


# Free-text fields forwarded to vendors (packing slips, labels)
MAX_TEXT_LENGTH = 200
ADDRESS_TEXT_FIELDS = ("name", "company", "street1", "street2", "city", "state", "postal_code")


def sanitize_text(text: Any, max_length: int = MAX_TEXT_LENGTH) -> str:
    """Strip markup and whitespace from user input text."""
    if not text:
        return ""
    text = bleach.clean(str(text).strip(), tags=[], strip=True)
    if max_length and len(text) > max_length:
        text = text[:max_length]
    return text


def sanitize_quote_request(data: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a quote request body with its free-text fields sanitized."""
    cleaned = dict(data)
    if isinstance(data.get("spec"), dict):
        spec = dict(data["spec"])
        if spec.get("title"):
            spec["title"] = sanitize_text(spec["title"])
        cleaned["spec"] = spec
    if isinstance(data.get("shipping_address"), dict):
        cleaned["shipping_address"] = sanitize_address(data["shipping_address"])
    return cleaned


def sanitize_address(address: Dict[str, Any]) -> Dict[str, Any]:
    cleaned = dict(address)
    for key in ADDRESS_TEXT_FIELDS:
        if cleaned.get(key):
            cleaned[key] = sanitize_text(cleaned[key])
    return cleaned
