from pathlib import Path

from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy.engine import Engine

from app.config import is_production_mode, settings
from app.db.base import Base

API_ROOT = Path(__file__).resolve().parents[2]


def get_alembic_config(database_url: str | None = None) -> Config:
    config = Config(str(API_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(API_ROOT / "app" / "db" / "migrations"))
    config.set_main_option("sqlalchemy.url", database_url or settings.database_url)
    return config


def get_alembic_head_revision() -> str | None:
    script = ScriptDirectory.from_config(get_alembic_config())
    return script.get_current_head()


def get_current_db_revision(engine: Engine) -> str | None:
    with engine.connect() as connection:
        return MigrationContext.configure(connection).get_current_revision()


def assert_db_is_up_to_date(engine: Engine) -> None:
    current = get_current_db_revision(engine)
    head = get_alembic_head_revision()
    if current != head:
        raise RuntimeError(
            f"Database schema at {current or 'no revision'}, expected {head}. "
            "Run: alembic upgrade head"
        )


def maybe_create_schema(engine: Engine) -> bool:
    """Create missing tables from model metadata; returns whether it ran."""
    if not settings.auto_create_schema:
        return False
    if is_production_mode():
        raise RuntimeError("AUTO_CREATE_SCHEMA must be disabled in APP_MODE=production")

    import app.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    return True
