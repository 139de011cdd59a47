"""Alembic migrations against the ORM metadata.

Sync tests: the Alembic env drives the async engine with its own event loop.
"""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

import escrow_mediation
from escrow_mediation.infrastructure.database.orm_models import Base

MIGRATIONS = Path(escrow_mediation.__file__).parent / "infrastructure" / "migrations"


def _alembic_config(db_path: Path) -> Config:
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS))
    config.set_main_option("sqlalchemy.url", f"sqlite+aiosqlite:///{db_path}")
    return config


def _inspect(db_path: Path):  # noqa: ANN202
    engine = create_engine(f"sqlite:///{db_path}")
    return engine, inspect(engine)


class TestInitialRevision:
    def test_upgrade_matches_models(self, tmp_path):  # noqa: ANN001
        db_path = tmp_path / "migrated.db"
        command.upgrade(_alembic_config(db_path), "head")

        engine, inspector = _inspect(db_path)
        try:
            tables = set(inspector.get_table_names()) - {"alembic_version"}
            assert tables == set(Base.metadata.tables)
            for name, table in Base.metadata.tables.items():
                migrated = {column["name"] for column in inspector.get_columns(name)}
                assert migrated == set(table.columns.keys()), name
                indexes = {index["name"] for index in inspector.get_indexes(name)}
                assert indexes == {index.name for index in table.indexes}, name
        finally:
            engine.dispose()

    def test_check_constraints_carried(self, tmp_path):  # noqa: ANN001
        db_path = tmp_path / "migrated.db"
        command.upgrade(_alembic_config(db_path), "head")

        engine, inspector = _inspect(db_path)
        try:
            names = {ck["name"] for ck in inspector.get_check_constraints("mediation_requests")}
            assert {
                "ck_mediation_valid_status",
                "ck_mediation_escrow_status",
                "ck_mediation_distinct_parties",
            } <= names
        finally:
            engine.dispose()

    def test_downgrade_to_base_drops_everything(self, tmp_path):  # noqa: ANN001
        db_path = tmp_path / "migrated.db"
        config = _alembic_config(db_path)
        command.upgrade(config, "head")
        command.downgrade(config, "base")

        engine, inspector = _inspect(db_path)
        try:
            assert set(inspector.get_table_names()) <= {"alembic_version"}
        finally:
            engine.dispose()
