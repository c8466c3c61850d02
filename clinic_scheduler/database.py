from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_scheduler.core import config


def build_engine(database_url: str):
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, echo=config.SQL_ECHO, connect_args=connect_args)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

ACTIVE_SLOT_INDEX_SQL = (
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_slot "
    "ON appointments(provider_id, appointment_datetime) "
    "WHERE status NOT IN ('CANCELLED_BY_PATIENT', 'CANCELLED_BY_PROVIDER')"
)

_schema_lock = Lock()
_scheduling_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_scheduling_schema(bind=None) -> None:
    """Bring tables created by older releases up to the current layout."""
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    bind = bind or engine

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        inspector = inspect(bind)
        table_names = inspector.get_table_names()

        with bind.begin() as connection:
            if 'users' in table_names:
                existing_columns = {column['name'] for column in inspector.get_columns('users')}
                migration_steps = [
                    ('slot_duration_minutes', 'ALTER TABLE users ADD COLUMN slot_duration_minutes INTEGER'),
                    ('specialization', 'ALTER TABLE users ADD COLUMN specialization VARCHAR'),
                    ('location', 'ALTER TABLE users ADD COLUMN location VARCHAR'),
                ]
                for column_name, statement in migration_steps:
                    if column_name not in existing_columns:
                        connection.execute(text(statement))

            if 'appointments' in table_names:
                existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
                if 'created_at' not in existing_columns:
                    connection.execute(text('ALTER TABLE appointments ADD COLUMN created_at TIMESTAMP'))
                connection.execute(text(ACTIVE_SLOT_INDEX_SQL))
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_appointments_patient_datetime '
                        'ON appointments(patient_id, appointment_datetime)'
                    )
                )

            if 'waitlist_entries' in table_names:
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_waitlist_provider_date '
                        'ON waitlist_entries(provider_id, preferred_date, created_at)'
                    )
                )

        _scheduling_schema_checked = True
