"""Tests unitaires — api/auth.py."""

from __future__ import annotations

import pytest

from portainer_mcp_wrapper.api.auth import verify_bearer
from portainer_mcp_wrapper.core.exceptions import AuthError


@pytest.mark.unit
def test_valid_bearer_token_passes():
    verify_bearer("Bearer s3cret", "s3cret")


@pytest.mark.unit
@pytest.mark.parametrize(
    "header,reason",
    [
        (None, "missing authorization header"),
        ("", "missing authorization header"),
        ("s3cret", "invalid authorization format"),
        ("Basic s3cret", "invalid authorization format"),
        ("bearer s3cret", "invalid authorization format"),
        ("Bearer wrong", "invalid token"),
        ("Bearer  s3cret", "invalid token"),
        ("Bearer ", "invalid token"),
    ],
)
def test_rejections_carry_stable_reason(header, reason):
    with pytest.raises(AuthError) as exc:
        verify_bearer(header, "s3cret")
    assert exc.value.message == reason
    assert exc.value.code == "auth_error"
