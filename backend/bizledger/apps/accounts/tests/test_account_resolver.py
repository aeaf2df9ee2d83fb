from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from bizledger.apps.accounts import services, store
from bizledger.errors import InternalError, NotFound


def test_resolves_account_through_membership(db_session, seed):
    account, _ = seed(user_id="user-1")

    resolved = services.resolve_account_for_user(db_session, user_id="user-1")

    assert resolved.id == account.id


def test_user_without_membership_is_not_found(db_session, seed):
    seed(user_id="someone-else")

    with pytest.raises(NotFound) as excinfo:
        services.resolve_account_for_user(db_session, user_id="user-1")
    assert excinfo.value.message == "Business role not found for user"


def test_business_without_account_is_not_found(db_session, seed):
    seed(user_id="user-1", with_account=False)

    with pytest.raises(NotFound) as excinfo:
        services.resolve_account_for_user(db_session, user_id="user-1")
    assert excinfo.value.message == "Business not found or has no associated account"


def test_missing_business_is_not_found(db_session):
    with pytest.raises(NotFound) as excinfo:
        services.get_account_by_business_id(db_session, business_id="BIZ-MISSING")
    assert excinfo.value.message == "Business not found or has no associated account"


def test_persistence_failure_surfaces_as_not_found(db_session, monkeypatch):
    def broken(db, *, user_id):
        return store._failed(db, "first_business_role_for_user", OperationalError("SELECT", {}, Exception("down")))

    monkeypatch.setattr(store, "first_business_role_for_user", broken)

    with pytest.raises(NotFound):
        services.resolve_account_for_user(db_session, user_id="user-1")


def test_list_memberships_returns_every_business(db_session, seed):
    _, first = seed(user_id="user-1", role="owner", name="First")
    _, second = seed(user_id="user-1", role="accountant", name="Second")

    memberships = services.list_memberships(db_session, user_id="user-1")

    assert {(m.business.id, m.role) for m in memberships} == {
        (first.id, "owner"),
        (second.id, "accountant"),
    }


def test_list_memberships_raises_on_store_failure(db_session, monkeypatch):
    def broken(db, *, user_id):
        return store._failed(db, "list_business_roles_for_user", OperationalError("SELECT", {}, Exception("down")))

    monkeypatch.setattr(store, "list_business_roles_for_user", broken)

    with pytest.raises(InternalError):
        services.list_memberships(db_session, user_id="user-1")
