"""JSON response envelope shared by all API endpoints."""
from typing import Any, Optional

from flask import jsonify


def ok(data: Any = None, message: str = "OK", status: int = 200):
    body = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return jsonify(body), status


def fail(message: str, status: int, data: Optional[Any] = None):
    body = {"success": False, "message": message}
    if data is not None:
        body["data"] = data
    return jsonify(body), status
