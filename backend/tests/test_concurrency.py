"""Commit failures and post-commit hooks."""

import pytest
from sqlalchemy.exc import OperationalError

from backoffice.extensions import db
from backoffice.models import SafeBoxMovement
from backoffice.routes import treasury as treasury_routes
from backoffice.services import safe_box_service
from backoffice.services.concurrency import commit_with_retry, on_commit


@pytest.fixture()
def locked_database(monkeypatch):
    """Once armed, the next commit fails as if the database were locked."""
    real_commit = db.session.commit
    state = {"armed": False, "failures": 0}

    def commit():
        if state["armed"]:
            state["armed"] = False
            state["failures"] += 1
            raise OperationalError("COMMIT", {}, Exception("database is locked"))
        return real_commit()

    monkeypatch.setattr(db.session, "commit", commit)
    return state


def _deposits(safe_box_id):
    return db.session.query(SafeBoxMovement).filter_by(safe_box_id=safe_box_id, movement_type="deposit").count()


class TestCommitFailure:

    def test_failed_commit_is_raised_not_retried(self, org_id, safe_box_id, locked_database):
        safe_box_service.deposit(safe_box_id=safe_box_id, org_id=org_id, amount_cents=777)
        locked_database["armed"] = True

        with pytest.raises(OperationalError):
            commit_with_retry()

        assert locked_database["failures"] == 1
        assert _deposits(safe_box_id) == 0

    def test_route_answers_500_and_keeps_nothing(
        self, monkeypatch, client, admin_headers, safe_box_id, locked_database
    ):
        def commit_while_locked():
            # Only the first deposit hits the lock.
            if not locked_database["failures"]:
                locked_database["armed"] = True
            commit_with_retry()

        monkeypatch.setattr(treasury_routes, "commit_with_retry", commit_while_locked)

        resp = client.post(f"/api/treasury/safe-boxes/{safe_box_id}/deposit",
                           json={"amount_cents": 777}, headers=admin_headers)
        assert resp.status_code == 500
        assert _deposits(safe_box_id) == 0

        again = client.post(f"/api/treasury/safe-boxes/{safe_box_id}/deposit",
                            json={"amount_cents": 777}, headers=admin_headers)
        assert again.status_code == 201
        assert _deposits(safe_box_id) == 1


class TestCommitHooks:

    def test_hooks_run_once_after_commit(self, app):
        calls = []
        on_commit("refresh", lambda: calls.append("a"))
        on_commit("refresh", lambda: calls.append("b"))
        commit_with_retry()
        assert calls == ["b"]

        commit_with_retry()
        assert calls == ["b"]

    def test_rollback_discards_hooks(self, safe_box_id):
        calls = []
        _deposits(safe_box_id)
        on_commit("sync", lambda: calls.append("sync"))
        db.session.rollback()
        commit_with_retry()
        assert calls == []

    def test_failed_commit_discards_hooks(self, org_id, safe_box_id, locked_database):
        calls = []
        safe_box_service.deposit(safe_box_id=safe_box_id, org_id=org_id, amount_cents=100)
        on_commit("sync", lambda: calls.append("sync"))
        locked_database["armed"] = True

        with pytest.raises(OperationalError):
            commit_with_retry()
        commit_with_retry()
        assert calls == []
