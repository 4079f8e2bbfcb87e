from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from bookthevisit.core import config

APPOINTMENT_OVERLAP_CONSTRAINT = 'appointments_no_booked_overlap'

engine = create_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_time_off_schema_checked = False
_appointment_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_time_off_schema() -> None:
    global _time_off_schema_checked

    if _time_off_schema_checked:
        return

    with _schema_lock:
        if _time_off_schema_checked:
            return

        inspector = inspect(engine)

        if 'time_off' not in inspector.get_table_names():
            _time_off_schema_checked = True
            return

        # Legacy rows only carried start_time/end_time.
        existing_columns = {column['name'] for column in inspector.get_columns('time_off')}
        migration_steps = [
            ('all_day', 'ALTER TABLE time_off ADD COLUMN all_day BOOLEAN DEFAULT FALSE'),
            ('off_date', 'ALTER TABLE time_off ADD COLUMN off_date DATE'),
            ('reason', 'ALTER TABLE time_off ADD COLUMN reason VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_time_off_provider_date ON time_off(provider_id, off_date)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_time_off_provider_range ON time_off(provider_id, start_time, end_time)')
            )

        _time_off_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('manage_token', 'ALTER TABLE appointments ADD COLUMN manage_token VARCHAR'),
            ('patient_note', 'ALTER TABLE appointments ADD COLUMN patient_note VARCHAR'),
            ('reminder_24h_sent_at', 'ALTER TABLE appointments ADD COLUMN reminder_24h_sent_at TIMESTAMP'),
            ('reminder_2h_sent_at', 'ALTER TABLE appointments ADD COLUMN reminder_2h_sent_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_provider_range '
                    'ON appointments(provider_id, status, start_time, end_time)'
                )
            )

            if engine.dialect.name == 'postgresql':
                # Authoritative guard against overlapping booked rows across processes.
                connection.execute(text('CREATE EXTENSION IF NOT EXISTS btree_gist'))
                constraint_exists = connection.execute(
                    text('SELECT 1 FROM pg_constraint WHERE conname = :name'),
                    {'name': APPOINTMENT_OVERLAP_CONSTRAINT},
                ).first()
                if not constraint_exists:
                    connection.execute(
                        text(
                            f'ALTER TABLE appointments ADD CONSTRAINT {APPOINTMENT_OVERLAP_CONSTRAINT} '
                            "EXCLUDE USING gist (provider_id WITH =, tstzrange(start_time, end_time, '[)') WITH &&) "
                            "WHERE (status = 'booked')"
                        )
                    )

        _appointment_schema_checked = True
