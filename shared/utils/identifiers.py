"""Helpers for deterministic identifier generation across distribution services."""

from __future__ import annotations

import base64
import json
from typing import Any, Mapping


def _normalize_component(component: Any) -> Any:
    """Normalize a value so structurally equal inputs serialize identically."""
    if isinstance(component, Mapping):
        return {str(key): _normalize_component(value) for key, value in component.items()}

    if isinstance(component, (list, tuple)):
        return [_normalize_component(value) for value in component]

    if isinstance(component, float) and component.is_integer():
        # 75000 and 75000.0 describe the same parameter value
        return int(component)

    if isinstance(component, (bytes, bytearray)):
        try:
            return component.decode("utf-8")
        except UnicodeDecodeError:
            return component.hex()

    return component


def canonical_json(value: Any) -> str:
    """
    Serialize a value to canonical JSON.

    Keys are sorted at every nesting level, separators are compact and
    integral floats are written as integers. Non-finite numbers are rejected.
    """
    return json.dumps(
        _normalize_component(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def encode_parameters(parameters: Mapping[str, Any]) -> str:
    """Return the standard base64 encoding of the canonical JSON of ``parameters``."""
    return base64.b64encode(canonical_json(parameters).encode("utf-8")).decode("ascii")


__all__ = [
    "canonical_json",
    "encode_parameters",
]
