import logging
import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic.core import config


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL")

engine = create_engine(DATABASE_URL, echo=config.SQL_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

logger = logging.getLogger(__name__)

APPOINTMENT_STATUS_VALUES = ('pending', 'confirmed', 'completed', 'cancelled', 'reschedule_requested')
LEGACY_SLOT_UNIQUE_CONSTRAINT = 'appointments_doctor_id_date_start_time_end_time_key'
STATUS_CHECK_CONSTRAINT = 'appointments_status_check'

_schema_lock = Lock()
_appointment_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


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
            ('reason', 'ALTER TABLE appointments ADD COLUMN reason TEXT'),
            ('reschedule_reason', 'ALTER TABLE appointments ADD COLUMN reschedule_reason TEXT'),
            ('proposed_date', 'ALTER TABLE appointments ADD COLUMN proposed_date DATE'),
            ('proposed_start_time', 'ALTER TABLE appointments ADD COLUMN proposed_start_time TIME'),
            ('cancellation_reason', 'ALTER TABLE appointments ADD COLUMN cancellation_reason TEXT'),
            ('priority', 'ALTER TABLE appointments ADD COLUMN priority INTEGER DEFAULT 1'),
            ('conflicting_appointment_id', 'ALTER TABLE appointments ADD COLUMN conflicting_appointment_id INTEGER'),
            ('created_at', 'ALTER TABLE appointments ADD COLUMN created_at TIMESTAMP'),
            ('updated_at', 'ALTER TABLE appointments ADD COLUMN updated_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    logger.info('Adding column appointments.%s', column_name)
                    connection.execute(text(statement))

            if engine.dialect.name == 'postgresql':
                # Overlapping bookings are allowed; confirmation decides who keeps the slot.
                connection.execute(
                    text(f'ALTER TABLE appointments DROP CONSTRAINT IF EXISTS {LEGACY_SLOT_UNIQUE_CONSTRAINT}')
                )
                allowed_statuses = ', '.join(f"'{value}'" for value in APPOINTMENT_STATUS_VALUES)
                connection.execute(
                    text(f'ALTER TABLE appointments DROP CONSTRAINT IF EXISTS {STATUS_CHECK_CONSTRAINT}')
                )
                connection.execute(
                    text(
                        f'ALTER TABLE appointments ADD CONSTRAINT {STATUS_CHECK_CONSTRAINT} '
                        f'CHECK (status IN ({allowed_statuses}))'
                    )
                )

            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_date ON appointments(doctor_id, date)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient ON appointments(patient_id)')
            )

        _appointment_schema_checked = True
