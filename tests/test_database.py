"""
Persistence Helper Tests

Transactions commit or roll back as a unit, connectivity failures become
StoreUnavailableError, and typed filters agree with their cache keys.
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from civicpulse.cache import CacheKeyBuilder, CacheNamespace
from civicpulse.database import (
    PriorityTier,
    Report,
    ReportFilter,
    User,
    get_db_context,
    run_in_transaction,
    store_errors,
    transaction,
)
from civicpulse.errors import StoreUnavailableError, ValidationError

from conftest import add_report


class TestTransactions:

    def test_commit(self, db):
        with transaction(db):
            db.add(User(phone_number="+910000000100", total_reports=0, resolved_reports=0))

        assert db.scalar(select(User).where(User.phone_number == "+910000000100")) is not None

    def test_rollback_on_error(self, db):
        with pytest.raises(RuntimeError):
            with transaction(db):
                db.add(User(phone_number="+910000000101", total_reports=0, resolved_reports=0))
                db.flush()
                raise RuntimeError("boom")

        assert db.scalar(select(User).where(User.phone_number == "+910000000101")) is None

    def test_run_in_transaction_returns_result(self, db, user):
        count = run_in_transaction(db, lambda s: s.get(User, user.id).total_reports + 1)
        assert count == 1

    def test_context_session_commits(self, engine, db):
        with get_db_context() as session:
            session.add(User(phone_number="+910000000102", total_reports=0, resolved_reports=0))

        assert db.scalar(select(User).where(User.phone_number == "+910000000102")) is not None


class TestStoreErrors:

    def test_operational_error_is_retryable(self):
        with pytest.raises(StoreUnavailableError) as exc:
            with store_errors():
                raise OperationalError("SELECT 1", {}, Exception("server closed the connection"))

        assert exc.value.status_code == 503
        assert exc.value.retry_after > 0

    def test_domain_errors_pass_through(self):
        with pytest.raises(ValidationError):
            with store_errors():
                raise ValidationError("bad input")

    def test_failed_commit_rolls_back(self):
        broken = MagicMock()
        broken.commit.side_effect = OperationalError("COMMIT", {}, Exception("connection reset"))

        with pytest.raises(StoreUnavailableError):
            with transaction(broken):
                pass

        broken.rollback.assert_called_once()


class TestReportFilter:

    def test_parse_normalizes(self):
        parsed = ReportFilter.parse(is_resolved="false", category=" Parks ", priority="HIGH", department="all")

        assert parsed == ReportFilter(is_resolved=False, category="Parks", priority=PriorityTier.HIGH)

    @pytest.mark.parametrize("kwargs", [
        {"is_resolved": "maybe"},
        {"priority": "urgent"},
        {"status": "closed"},
    ])
    def test_parse_rejects(self, kwargs):
        with pytest.raises(ValidationError):
            ReportFilter.parse(**kwargs)

    def test_apply_matches_rows(self, db, user):
        add_report(db, user, title="Open")
        add_report(db, user, title="Done", is_resolved=True)

        stmt = ReportFilter(is_resolved=True).apply(select(Report.title))

        assert db.scalars(stmt).all() == ["Done"]

    def test_blank_filter_and_no_filter_share_a_key(self):
        blank = ReportFilter.parse(is_resolved="all", category="", priority=None)

        assert CacheKeyBuilder.build(CacheNamespace.REPORTS, "user", "u1", filters=blank) == \
            CacheKeyBuilder.build(CacheNamespace.REPORTS, "user", "u1")
