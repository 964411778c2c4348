from __future__ import annotations

from typing import Any

from flask import jsonify, request

from app.studio.errors import ValidationError


def json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def ok(data: Any = None, status: int = 200, **extra: Any):
    payload: dict[str, Any] = {"success": True, "data": data}
    payload.update(extra)
    return jsonify(payload), status
