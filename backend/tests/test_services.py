"""Tests for the identity resolver and the artifact store."""

from __future__ import annotations

import pytest

from app.services.artifacts import LocalObjectStore
from app.services.identity import DEV_IDENTITY_ID, TokenIdentityService


def test_tokens_resolve_to_configured_identities() -> None:
    service = TokenIdentityService({"t1": "alice:admin", "t2": "bob"}, allow_anonymous=True)

    admin = service.authenticate("t1")
    viewer = service.authenticate("t2")

    assert (admin.user_id, admin.is_admin) == ("alice", True)
    assert (viewer.user_id, viewer.role) == ("bob", "viewer")
    assert service.authenticate("unknown") is None
    assert service.authenticate(None) is None


def test_anonymous_admin_only_without_tokens() -> None:
    identity = TokenIdentityService({}, allow_anonymous=True).authenticate(None)

    assert identity.user_id == DEV_IDENTITY_ID
    assert identity.is_admin
    assert TokenIdentityService({}).authenticate(None) is None


def test_object_store_round_trips_json_and_lists_keys(tmp_path) -> None:
    store = LocalObjectStore(tmp_path)

    key = store.put_json("jobs/j1/errors.json", {"errors": ["Año"]})
    store.put_bytes("jobs/j1/uploads/pyg.csv", b"Concepto\n")

    assert store.get_json(key) == {"errors": ["Año"]}
    assert store.exists("jobs/j1/uploads/pyg.csv")
    assert store.list("jobs/j1") == ["jobs/j1/errors.json", "jobs/j1/uploads/pyg.csv"]
    assert store.list("jobs/none") == []


@pytest.mark.parametrize("key", ["../escape.json", "/etc/passwd", ""])
def test_object_store_rejects_keys_outside_its_root(tmp_path, key: str) -> None:
    with pytest.raises(ValueError):
        LocalObjectStore(tmp_path).put_bytes(key, b"x")
