# backend/stagebook/responses.py
from typing import Any


def ok(message: str, data: Any = None) -> dict:
    body = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return body


def fail(message: str, data: Any = None) -> dict:
    body = {"success": False, "message": message}
    if data is not None:
        body["data"] = data
    return body
