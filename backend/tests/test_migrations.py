from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from timetabler.core.config import get_settings

ROOT = Path(__file__).resolve().parents[2]


def _table_names(url: str) -> set[str]:
    engine = create_engine(url)
    try:
        return set(inspect(engine).get_table_names())
    finally:
        engine.dispose()


def test_migrations_create_and_drop_scheduling_tables(tmp_path, monkeypatch):
    url = f"sqlite+pysqlite:///{tmp_path / 'timetabler.db'}"
    monkeypatch.setattr(get_settings(), "database_url", url)
    config = Config()
    config.set_main_option("script_location", str(ROOT / "database" / "migrations"))

    command.upgrade(config, "head")
    assert {"alembic_version", "entity_snapshots", "timetables"} <= _table_names(url)

    command.downgrade(config, "base")
    assert _table_names(url) & {"entity_snapshots", "timetables"} == set()
