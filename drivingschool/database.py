import logging
from threading import Lock

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from drivingschool.core import config

logger = logging.getLogger(__name__)

connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(config.DATABASE_URL, connect_args=connect_args)


def enable_sqlite_foreign_keys(target_engine) -> None:
    # SQLite ignores ON DELETE rules unless the pragma is set per connection.
    if target_engine.dialect.name != "sqlite":
        return

    @event.listens_for(target_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


enable_sqlite_foreign_keys(engine)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_user_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_user_schema() -> None:
    """Add the login columns to a users table created before local and OIDC login were merged."""
    global _user_schema_checked

    if _user_schema_checked:
        return

    with _schema_lock:
        if _user_schema_checked:
            return

        inspector = inspect(engine)

        if 'users' not in inspector.get_table_names():
            _user_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('users')}
        migration_steps = [
            ('password', 'ALTER TABLE users ADD COLUMN password VARCHAR'),
            ('oidc_subject', 'ALTER TABLE users ADD COLUMN oidc_subject VARCHAR'),
            ('profile_image_url', 'ALTER TABLE users ADD COLUMN profile_image_url VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    logger.info('Adding missing users.%s column', column_name)
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE UNIQUE INDEX IF NOT EXISTS idx_users_oidc_subject ON users(oidc_subject)')
            )

        _user_schema_checked = True


def import_models() -> None:
    # Registers every table on Base.metadata.
    from drivingschool.models import (  # noqa: F401
        assessment,
        audit_log,
        auth_session,
        certificate,
        course,
        enrollment,
        payment,
        question,
        schedule,
        test_instance,
        test_template,
        user,
    )


def init_db() -> None:
    import_models()
    Base.metadata.create_all(bind=engine)
    ensure_user_schema()
