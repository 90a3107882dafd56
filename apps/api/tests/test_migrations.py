"""
Migration graph integrity and the container bootstrap.

New migrations must chain off the current head rather than start a new
root, or upgrade order becomes non-deterministic.
"""
from alembic.script import ScriptDirectory
from sqlalchemy import inspect

from core.database import engine
from run_migrations import alembic_config, main, wait_for_database

EXPECTED_HEADS = {"002"}


def _script() -> ScriptDirectory:
    return ScriptDirectory.from_config(alembic_config())


def test_single_expected_head():
    assert set(_script().get_heads()) == EXPECTED_HEADS


def test_single_root():
    roots = [r.revision for r in _script().walk_revisions() if r.down_revision is None]
    assert roots == ["001"]


def test_head_creates_every_table():
    tables = set(inspect(engine).get_table_names())
    assert {"submissions", "reviews", "comments", "notifications", "notification_preferences"} <= tables


def test_bootstrap_is_idempotent():
    assert wait_for_database(max_attempts=1, delay_seconds=0) is True
    assert main() == 0


def test_bootstrap_gives_up_on_an_unreachable_database(monkeypatch):
    monkeypatch.setattr("core.database.check_db_connection", lambda: False)
    monkeypatch.setattr("run_migrations.time.sleep", lambda seconds: None)
    assert wait_for_database(max_attempts=2, delay_seconds=0) is False
    assert main() == 1
