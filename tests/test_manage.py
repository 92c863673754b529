"""
Tests for src/marketintel/manage.py (the intel-config CLI).

SessionLocal is swapped for the in-memory test session factory.
"""
import sys
from unittest.mock import patch

import pytest
from sqlalchemy import select

from conftest import make_config
from marketintel import manage
from marketintel.db.models import MarketIntelConfig


def _cli(Session, *argv):
    with patch.object(sys, "argv", ["intel-config", *argv]), \
         patch("marketintel.manage.SessionLocal", Session), \
         patch("marketintel.manage.create_tables"):
        manage.main()


def _config(db, org="org_1"):
    db.expire_all()
    return db.scalars(select(MarketIntelConfig).where(MarketIntelConfig.organization_id == org)).first()


class TestManageCli:

    def test_enable_creates_pending_config(self, Session, db, capsys):
        _cli(Session, "enable", "--org", "org_1", "--platform", "xe_gr", "--frequency", "WEEKLY", "--transaction", "rent")

        config = _config(db)
        assert config.status == "PENDING_SETUP"
        assert config.platforms == ["xe_gr"]
        assert config.scrape_frequency == "WEEKLY"
        assert config.transaction_types == ["rent"]
        assert "PENDING_SETUP" in capsys.readouterr().out

    def test_enable_reenables_disabled(self, Session, db):
        db.add(make_config(status="DISABLED"))
        db.commit()

        _cli(Session, "enable", "--org", "org_1")

        assert _config(db).status == "PENDING_SETUP"

    def test_pause_and_resume(self, Session, db):
        db.add(make_config())
        db.commit()

        _cli(Session, "pause", "--org", "org_1")
        config = _config(db)
        assert config.status == "PAUSED"
        assert config.pause_reason == "manual"

        _cli(Session, "resume", "--org", "org_1")
        assert _config(db).status == "ACTIVE"

    def test_invalid_transition_exits(self, Session, db, capsys):
        db.add(make_config(status="DISABLED"))
        db.commit()

        with pytest.raises(SystemExit) as exc_info:
            _cli(Session, "pause", "--org", "org_1")

        assert exc_info.value.code == 1
        assert "Cannot move" in capsys.readouterr().err
        assert _config(db).status == "DISABLED"

    def test_unknown_org_exits(self, Session, capsys):
        with pytest.raises(SystemExit):
            _cli(Session, "show", "--org", "org_missing")
        assert "no market intel config" in capsys.readouterr().err

    def test_runs_without_history(self, Session, capsys):
        _cli(Session, "runs", "--org", "org_1")
        assert "No runs recorded" in capsys.readouterr().out

    def test_enable_sets_property_types(self, Session, db):
        _cli(Session, "enable", "--org", "org_1", "--property-type", "APARTMENT", "--property-type", "APARTMENT")
        assert _config(db).property_types == ["APARTMENT"]

    def test_unknown_property_type_rejected(self, Session, db):
        with pytest.raises(SystemExit) as exc_info:
            _cli(Session, "enable", "--org", "org_1", "--property-type", "CASTLE")
        assert exc_info.value.code == 2
        assert _config(db) is None
