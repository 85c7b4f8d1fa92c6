"""
Migration tests: run the Alembic environment against a throwaway SQLite
file and check the resulting schema.

These are plain (sync) tests because the Alembic env drives its own
event loop with ``asyncio.run``.
"""
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from articlehub.config import settings

ROOT = Path(__file__).resolve().parent.parent


def _alembic_config() -> Config:
    # No ini file: keeps the test run's logging configuration untouched.
    cfg = Config()
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    return cfg


def test_upgrade_and_downgrade(tmp_path, monkeypatch):
    db_file = tmp_path / "migrate.db"
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite+aiosqlite:///{db_file}")
    cfg = _alembic_config()

    command.upgrade(cfg, "head")

    engine = create_engine(f"sqlite:///{db_file}")
    try:
        inspector = inspect(engine)
        assert {"users", "tags", "articles", "article_tags"} <= set(inspector.get_table_names())
        article_fks = inspector.get_foreign_keys("articles")
        assert [fk["options"].get("ondelete") for fk in article_fks] == ["CASCADE"]
        index_names = {ix["name"] for ix in inspector.get_indexes("articles")}
        assert "ix_articles_is_public_created_at" in index_names
    finally:
        engine.dispose()

    command.downgrade(cfg, "base")

    engine = create_engine(f"sqlite:///{db_file}")
    try:
        assert set(inspect(engine).get_table_names()) <= {"alembic_version"}
    finally:
        engine.dispose()
