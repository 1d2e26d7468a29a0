"""Tests for blueprint mounting helpers."""

from __future__ import annotations

import pytest
from flask import Blueprint, Flask

from merkur_auth.api import join_prefix, register_blueprint_group


@pytest.mark.parametrize(
    ("segments", "expected"),
    [
        (("/api", "v1"), "/api/v1"),
        (("/api/", "/v1/", ""), "/api/v1"),
        (("api/v1", "/auth"), "/api/v1/auth"),
        (("", ""), "/"),
    ],
)
def test_join_prefix(segments, expected):
    assert join_prefix(*segments) == expected


def test_register_blueprint_group_mounts_under_base():
    app = Flask(__name__)
    root = Blueprint("root", __name__)
    nested = Blueprint("nested", __name__)
    root.add_url_rule("/ping", "ping", lambda: "pong")
    nested.add_url_rule("/ping", "ping", lambda: "pong")

    register_blueprint_group(app, base_prefix="/api/v1", entries=[(root, ""), (nested, "/auth")])

    rules = {rule.rule for rule in app.url_map.iter_rules()}
    assert {"/api/v1/ping", "/api/v1/auth/ping"} <= rules
