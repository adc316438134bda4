"""Tests for canonical parameter identifiers."""

import base64
import json

import pytest

from shared.framework.cache import CacheKey
from shared.utils.identifiers import canonical_json, encode_parameters


def test_canonical_json_sorts_keys_and_compacts():
    assert canonical_json({"b": 1, "a": {"d": 2, "c": 3}}) == '{"a":{"c":3,"d":2},"b":1}'


def test_integral_floats_match_integers():
    assert canonical_json({"volumeCommitment": 75000.0}) == canonical_json({"volumeCommitment": 75000})


def test_canonical_json_rejects_non_finite_numbers():
    with pytest.raises(ValueError):
        canonical_json({"msrp": float("nan")})


def test_encode_parameters_is_base64_of_canonical_json():
    params = {"retailerMargin": 35, "msrp": 32.99}
    decoded = base64.b64decode(encode_parameters(params)).decode("utf-8")
    assert json.loads(decoded) == params
    assert decoded == '{"msrp":32.99,"retailerMargin":35}'


def test_projection_key_ignores_insertion_order():
    first = CacheKey.projection("session-1", {"msrp": 30, "retailerMargin": 40})
    second = CacheKey.projection("session-1", {"retailerMargin": 40, "msrp": 30})
    assert first == second
    assert first.startswith("projection:session-1:")


def test_projection_key_differs_per_value_and_scope():
    base = CacheKey.projection("session-1", {"msrp": 30})
    assert CacheKey.projection("session-1", {"msrp": 31}) != base
    assert CacheKey.projection("session-2", {"msrp": 30}) != base


def test_cache_key_layout():
    assert CacheKey.distribution("session-1") == "distribution:session-1:session"
    assert CacheKey.distribution("session-1", "baseline") == "distribution:session-1:scenario:baseline"
    assert CacheKey.stale("distribution:session-1:session") == "distribution:session-1:session:stale"
    assert CacheKey.session_parameters("s", "b") == "session:s:scenario:b:params"
    assert CacheKey.view_refresh("v") == "view_refresh:v"
    assert CacheKey.view_last_refresh("v") == "view_last_refresh:v"
    assert CacheKey.slow_operation("GET /x", 123) == "slow_operation:GET /x:123"
