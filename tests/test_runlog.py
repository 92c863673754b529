"""
Tests for src/marketintel/db/runlog.py

Uses the in-memory SQLite fixtures from conftest.py.
"""
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import NOW
from marketintel.db.models import ScrapeLog
from marketintel.db.runlog import (
    close_run,
    in_flight_key,
    open_run,
    prune_old_runs,
    reap_stale_runs,
    recent_runs,
    running_pairs,
)
from marketintel.errors import RunAlreadyInFlightError, RunLogFinalizedError
from marketintel.jobs import ScrapeJobResult


def _result(status="success", **extra) -> ScrapeJobResult:
    return ScrapeJobResult(
        organization_id="org_1",
        platform="spitogatos",
        status=status,
        completed_at=NOW + timedelta(minutes=2),
        **extra,
    )


# ---------------------------------------------------------------------------
# Open / close
# ---------------------------------------------------------------------------

class TestOpenClose:

    def test_open_creates_running_row(self, db):
        log = open_run(db, "org_1", "spitogatos", metadata={"max_pages": 5}, now=NOW)
        assert log.id is not None
        assert log.status == "running"
        assert log.started_at == NOW
        assert log.in_flight_key == "org_1:spitogatos"
        assert log.run_metadata == {"max_pages": 5}

    def test_second_open_for_same_pair_rejected(self, db):
        open_run(db, "org_1", "spitogatos", now=NOW)
        with pytest.raises(RunAlreadyInFlightError) as exc_info:
            open_run(db, "org_1", "spitogatos", now=NOW)
        assert exc_info.value.organization_id == "org_1"
        assert exc_info.value.platform == "spitogatos"
        assert len(db.scalars(select(ScrapeLog)).all()) == 1

    def test_other_pairs_open_independently(self, db):
        open_run(db, "org_1", "spitogatos", now=NOW)
        open_run(db, "org_1", "xe_gr", now=NOW)
        open_run(db, "org_2", "spitogatos", now=NOW)
        assert running_pairs(db) == {
            ("org_1", "spitogatos"),
            ("org_1", "xe_gr"),
            ("org_2", "spitogatos"),
        }

    def test_close_writes_counters_and_releases_pair(self, db):
        log = open_run(db, "org_1", "spitogatos", metadata={"max_pages": 5}, now=NOW)
        close_run(
            db,
            log,
            _result(listings_found=12, listings_new=4, listings_updated=3, pages_scraped=2, duration=1500),
            metadata={"page_errors": []},
        )
        assert log.status == "success"
        assert log.completed_at == NOW + timedelta(minutes=2)
        assert log.listings_found == 12
        assert log.listings_new == 4
        assert log.listings_updated == 3
        assert log.pages_scraped == 2
        assert log.scrape_duration_ms == 1500
        assert log.in_flight_key is None
        assert log.run_metadata == {"max_pages": 5, "page_errors": []}
        assert running_pairs(db) == set()

        # Pair can run again once closed
        again = open_run(db, "org_1", "spitogatos", now=NOW + timedelta(hours=1))
        assert again.id != log.id

    def test_error_message_joined_and_truncated(self, db):
        log = open_run(db, "org_1", "spitogatos", now=NOW)
        close_run(db, log, _result("failed", errors=["a" * 800, "b" * 800]))
        assert len(log.error_message) == 1000
        assert log.error_message.startswith("a" * 800 + "; ")

    def test_closed_log_is_immutable(self, db):
        log = open_run(db, "org_1", "spitogatos", now=NOW)
        close_run(db, log, _result())
        with pytest.raises(RunLogFinalizedError):
            close_run(db, log, _result("failed"))
        assert log.status == "success"

    def test_run_reaped_by_another_session_stays_failed(self, Session):
        worker, sweeper = Session(), Session()
        try:
            log = open_run(worker, "org_1", "spitogatos", now=NOW - timedelta(hours=5))
            assert log.status == "running"

            assert reap_stale_runs(sweeper, timedelta(minutes=120), now=NOW) == 1

            with pytest.raises(RunLogFinalizedError):
                close_run(worker, log, _result())

            sweeper.expire_all()
            [row] = sweeper.scalars(select(ScrapeLog)).all()
            assert row.status == "failed"
            assert row.error_message.startswith("Run abandoned")
            assert row.listings_found == 0
        finally:
            worker.close()
            sweeper.close()

    def test_in_flight_key_format(self):
        assert in_flight_key("org_9", "xe_gr") == "org_9:xe_gr"


# ---------------------------------------------------------------------------
# Queries and housekeeping
# ---------------------------------------------------------------------------

class TestHousekeeping:

    def test_recent_runs_newest_first(self, db):
        for hours in (0, 1, 2):
            log = open_run(db, "org_1", "spitogatos", now=NOW + timedelta(hours=hours))
            close_run(db, log, _result())
        log = open_run(db, "org_1", "xe_gr", now=NOW + timedelta(hours=5))
        close_run(db, log, _result())

        runs = recent_runs(db, "org_1")
        assert [r.platform for r in runs] == ["xe_gr", "spitogatos", "spitogatos", "spitogatos"]
        only_spitogatos = recent_runs(db, "org_1", platform="spitogatos", limit=2)
        assert [r.started_at for r in only_spitogatos] == [
            NOW + timedelta(hours=2),
            NOW + timedelta(hours=1),
        ]
        assert recent_runs(db, "org_2") == []

    def test_reap_stale_runs(self, db):
        stale = open_run(db, "org_1", "spitogatos", now=NOW - timedelta(hours=5))
        fresh = open_run(db, "org_1", "xe_gr", now=NOW - timedelta(minutes=10))

        reaped = reap_stale_runs(db, timedelta(minutes=120), now=NOW)

        assert reaped == 1
        assert stale.status == "failed"
        assert stale.completed_at == NOW
        assert stale.in_flight_key is None
        assert "120 minutes" in stale.error_message
        assert fresh.status == "running"
        assert running_pairs(db) == {("org_1", "xe_gr")}

    def test_prune_keeps_recent_and_running(self, db):
        old = open_run(db, "org_1", "spitogatos", now=NOW - timedelta(days=45))
        close_run(db, old, _result())
        open_run(db, "org_1", "xe_gr", now=NOW - timedelta(days=45))
        recent = open_run(db, "org_1", "spitogatos", now=NOW - timedelta(days=2))
        close_run(db, recent, _result())

        deleted = prune_old_runs(db, days=30, now=NOW)

        assert deleted == 1
        remaining = db.scalars(select(ScrapeLog).order_by(ScrapeLog.id)).all()
        assert [(r.platform, r.status) for r in remaining] == [
            ("xe_gr", "running"),
            ("spitogatos", "success"),
        ]
