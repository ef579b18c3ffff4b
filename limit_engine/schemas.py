"""
Request validation for the HTTP API.

Each parser takes a decoded JSON body and returns a clean dict, or
raises ValidationError naming the first offending field.
"""

from __future__ import annotations

import math
from typing import Any

from limit_engine.config import STATE_ORDER
from limit_engine.engine import is_state

EVALUATE_COMMANDS = ("start_new", "evaluate")


class ValidationError(Exception):
    """Bad request body. Maps to HTTP 400 with {message, field}."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        payload = {"message": self.message}
        if self.field is not None:
            payload["field"] = self.field
        return payload


def _require_object(body: Any, field: str | None = None) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise ValidationError("Expected object", field)
    return body


def _number(body: dict[str, Any], key: str, required: bool = True,
            path: str | None = None) -> float | None:
    field = path or key
    if key not in body or body[key] is None:
        if required:
            raise ValidationError("Required", field)
        return None
    value = body[key]
    # bool is an int subclass; JSON true/false are not numbers
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Expected number, received {type(value).__name__}", field)
    try:
        value = float(value)
    except OverflowError:
        # JSON integers are unbounded
        raise ValidationError("Expected finite number", field) from None
    if not math.isfinite(value):
        raise ValidationError("Expected finite number", field)
    return value


def _integer(body: dict[str, Any], key: str, required: bool = True,
             path: str | None = None) -> int | None:
    value = _number(body, key, required, path)
    if value is None:
        return None
    if not value.is_integer():
        raise ValidationError("Expected integer", path or key)
    return int(value)


def _string(body: dict[str, Any], key: str, required: bool = True,
            path: str | None = None) -> str | None:
    field = path or key
    if key not in body or body[key] is None:
        if required:
            raise ValidationError("Required", field)
        return None
    value = body[key]
    if not isinstance(value, str):
        raise ValidationError(f"Expected string, received {type(value).__name__}", field)
    return value


def _state(body: dict[str, Any], key: str, required: bool = True,
           path: str | None = None) -> str | None:
    value = _string(body, key, required, path)
    if value is not None and not is_state(value):
        raise ValidationError(
            f"Invalid enum value. Expected {' | '.join(STATE_ORDER)}, received '{value}'",
            path or key,
        )
    return value


def parse_evaluate_request(body: Any) -> dict[str, Any]:
    body = _require_object(body)
    command = _string(body, "command", required=False)
    if command is not None and command not in EVALUATE_COMMANDS:
        raise ValidationError(
            f"Invalid enum value. Expected {' | '.join(EVALUATE_COMMANDS)}, received '{command}'",
            "command",
        )
    return {
        "energy": _number(body, "energy"),
        "trend": _number(body, "trend"),
        "noise": _number(body, "noise"),
        "previousState": _state(body, "previousState", required=False),
        "runId": _integer(body, "runId", required=False),
        "stepIndex": _integer(body, "stepIndex", required=False),
        "timestamp": _number(body, "timestamp", required=False),
        "command": command,
        "name": _string(body, "name", required=False),
        "description": _string(body, "description", required=False),
        "maxEnergy": _number(body, "maxEnergy", required=False),
        "boundaryThreshold": _number(body, "boundaryThreshold", required=False),
        "haltThreshold": _number(body, "haltThreshold", required=False),
    }


def parse_run_configuration(value: Any, field: str = "configuration") -> dict[str, float]:
    value = _require_object(value, field)
    return {
        key: _number(value, key, path=f"{field}.{key}")
        for key in ("maxEnergy", "boundaryThreshold", "haltThreshold")
    }


def parse_create_run(body: Any) -> dict[str, Any]:
    body = _require_object(body)
    if "configuration" not in body:
        raise ValidationError("Required", "configuration")
    return {
        "name": _string(body, "name"),
        "description": _string(body, "description", required=False),
        "configuration": parse_run_configuration(body["configuration"]),
    }


def parse_update_run(body: Any) -> dict[str, Any]:
    body = _require_object(body)
    return {
        "name": _string(body, "name", required=False),
        "description": _string(body, "description", required=False),
    }


def parse_step(step: Any, index: int) -> dict[str, Any]:
    prefix = f"steps.{index}"
    step = _require_object(step, prefix)
    parsed = {
        "stepIndex": _integer(step, "stepIndex", path=f"{prefix}.stepIndex"),
        "timestamp": _number(step, "timestamp", path=f"{prefix}.timestamp"),
        "energy": _number(step, "energy", path=f"{prefix}.energy"),
        "trend": _number(step, "trend", path=f"{prefix}.trend"),
        "noise": _number(step, "noise", path=f"{prefix}.noise"),
        "calculatedState": _state(step, "calculatedState", path=f"{prefix}.calculatedState"),
    }
    effective = _number(step, "effectiveEnergy", required=False, path=f"{prefix}.effectiveEnergy")
    if effective is not None:
        parsed["effectiveEnergy"] = effective
    return parsed


def parse_add_steps(body: Any) -> list[dict[str, Any]]:
    body = _require_object(body)
    steps = body.get("steps")
    if not isinstance(steps, list):
        raise ValidationError("Expected array", "steps")
    return [parse_step(s, i) for i, s in enumerate(steps)]
