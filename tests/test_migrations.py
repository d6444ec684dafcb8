from pathlib import Path

import sqlalchemy as sa
from alembic import command
from alembic.config import Config

from snapmerge.db.models import Base

ROOT = Path(__file__).resolve().parent.parent


def _config(url: str) -> Config:
    config = Config()
    config.set_main_option("script_location", str(ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", url)
    return config


def test_upgrade_creates_the_model_schema(tmp_path):
    url = f"sqlite:///{tmp_path / 'migrated.db'}"

    command.upgrade(_config(url), "head")

    engine = sa.create_engine(url)
    try:
        inspector = sa.inspect(engine)
        tables = set(inspector.get_table_names()) - {"alembic_version"}
        assert tables == set(Base.metadata.tables)
        for name, table in Base.metadata.tables.items():
            columns = {column["name"] for column in inspector.get_columns(name)}
            assert columns == set(table.columns.keys()), name
    finally:
        engine.dispose()


def test_downgrade_removes_everything(tmp_path):
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    config = _config(url)

    command.upgrade(config, "head")
    command.downgrade(config, "base")

    engine = sa.create_engine(url)
    try:
        assert set(sa.inspect(engine).get_table_names()) <= {"alembic_version"}
    finally:
        engine.dispose()
