"""Repository layer responsible for all database access."""

from __future__ import annotations

import random
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from clinic_insights.domain.models import (
    PAYMENT_PAID,
    PAYMENT_REFUNDED,
    PAYMENT_UNPAID,
    ROLE_CLIENT,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_INVOICED,
    STATUS_NO_SHOW,
    STATUS_SCHEDULED,
    Appointment,
    BehaviorScores,
    EvaluationRecord,
    Service,
    User,
    WaitlistEntry,
)
from clinic_insights.utils.config import Settings, get_settings
from clinic_insights.utils.logger import get_logger
from clinic_insights.utils.timeutils import parse_timestamp, to_iso


logger = get_logger(__name__)


# Outcome mix per synthetic client archetype: (completed, cancelled, no_show).
_SYNTHETIC_ARCHETYPES = (
    ("reliable", (0.92, 0.06, 0.02)),
    ("canceller", (0.45, 0.5, 0.05)),
    ("no_show", (0.55, 0.1, 0.35)),
    ("occasional", (0.75, 0.2, 0.05)),
)

_SYNTHETIC_SERVICES = (
    ("s-1", "Individual therapy", False),
    ("s-2", "Group therapy", True),
    ("s-3", "Couples therapy", False),
)


def _scores_from_row(row: sqlite3.Row, prefix: str) -> Optional[BehaviorScores]:
    if row[f"{prefix}_reliability"] is None:
        return None
    return BehaviorScores(
        reliability_score=float(row[f"{prefix}_reliability"]),
        engagement_score=float(row[f"{prefix}_engagement"]),
        cancellation_risk_score=float(row[f"{prefix}_cancellation_risk"]),
    )


def _optional_str(value: object) -> Optional[str]:
    return None if value is None else str(value)


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Users (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        role TEXT NOT NULL,
                        email TEXT,
                        phone TEXT
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Services (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        is_group INTEGER NOT NULL DEFAULT 0 CHECK (is_group IN (0,1))
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Appointments (
                        id TEXT PRIMARY KEY,
                        client_id TEXT NOT NULL,
                        employee_id TEXT,
                        service_id TEXT NOT NULL,
                        start_at TEXT NOT NULL,
                        end_at TEXT NOT NULL,
                        status TEXT NOT NULL,
                        payment_status TEXT NOT NULL DEFAULT 'UNPAID',
                        cancelled_at TEXT,
                        cancel_reason TEXT,
                        cancelled_by TEXT,
                        created_at TEXT,
                        FOREIGN KEY (client_id) REFERENCES Users(id),
                        FOREIGN KEY (service_id) REFERENCES Services(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Waitlist (
                        id TEXT PRIMARY KEY,
                        client_id TEXT NOT NULL,
                        service_id TEXT NOT NULL,
                        priority INTEGER,
                        created_at TEXT NOT NULL,
                        notes TEXT,
                        FOREIGN KEY (client_id) REFERENCES Users(id),
                        FOREIGN KEY (service_id) REFERENCES Services(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS BehaviorEvaluations (
                        id TEXT PRIMARY KEY,
                        client_id TEXT NOT NULL,
                        evaluated_at TEXT NOT NULL,
                        previous_reliability REAL,
                        previous_engagement REAL,
                        previous_cancellation_risk REAL,
                        new_reliability REAL NOT NULL,
                        new_engagement REAL NOT NULL,
                        new_cancellation_risk REAL NOT NULL,
                        reason TEXT NOT NULL,
                        trigger_event TEXT,
                        FOREIGN KEY (client_id) REFERENCES Users(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_appointments_client_start
                    ON Appointments(client_id, start_at);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_waitlist_service
                    ON Waitlist(service_id, created_at);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_evaluations_client
                    ON BehaviorEvaluations(client_id, evaluated_at);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_synthetic_data(self, now: Optional[datetime] = None) -> None:
        """Seed deterministic synthetic history only when tables are empty."""
        random.seed(self._settings.synthetic_random_seed)
        now = (now or datetime.now(timezone.utc)).replace(minute=0, second=0, microsecond=0)
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute("SELECT COUNT(*) AS count FROM Users;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Synthetic data already present; skipping seed")
                    return

                users = [
                    ("u-admin", "Clinic Admin", "ADMIN", "admin@clinic.test", None),
                    ("u-reception", "Front Desk", "RECEPTION", "desk@clinic.test", None),
                    ("e-1", "Therapist One", "EMPLOYEE", "t1@clinic.test", None),
                    ("e-2", "Therapist Two", "EMPLOYEE", "t2@clinic.test", None),
                ]
                client_ids = []
                for index in range(1, self._settings.synthetic_client_count + 1):
                    client_id = f"c-{index:02d}"
                    client_ids.append(client_id)
                    users.append(
                        (
                            client_id,
                            f"Client {index:02d}",
                            ROLE_CLIENT,
                            f"client{index:02d}@clinic.test",
                            f"+420600{index:06d}",
                        )
                    )
                cursor.executemany(
                    "INSERT INTO Users (id, name, role, email, phone) VALUES (?, ?, ?, ?, ?);",
                    users,
                )
                cursor.executemany(
                    "INSERT INTO Services (id, name, is_group) VALUES (?, ?, ?);",
                    [(sid, name, int(is_group)) for sid, name, is_group in _SYNTHETIC_SERVICES],
                )

                appointments = []
                history_days = self._settings.synthetic_history_days
                for position, client_id in enumerate(client_ids):
                    _, (p_completed, p_cancelled, _) = _SYNTHETIC_ARCHETYPES[
                        position % len(_SYNTHETIC_ARCHETYPES)
                    ]
                    service_id = "s-2" if position % 5 == 4 else "s-1"
                    # Every third client stops booking part-way through the history.
                    last_offset = history_days // 2 if position % 3 == 2 else 0
                    visit_count = random.randint(4, 10)
                    for visit in range(visit_count):
                        days_ago = random.randint(last_offset, history_days)
                        start = now - timedelta(days=days_ago, hours=random.randint(0, 8))
                        created = start - timedelta(days=random.randint(2, 21))
                        roll = random.random()
                        cancelled_at = None
                        cancelled_by = None
                        payment_status = PAYMENT_PAID
                        if roll < p_completed:
                            status = STATUS_INVOICED if visit % 4 == 0 else STATUS_COMPLETED
                        elif roll < p_completed + p_cancelled:
                            status = STATUS_CANCELLED
                            cancelled_at = start - timedelta(hours=random.choice((2, 6, 30, 72)))
                            cancelled_by = "client"
                            payment_status = PAYMENT_REFUNDED if random.random() < 0.3 else PAYMENT_UNPAID
                        else:
                            status = STATUS_NO_SHOW
                            payment_status = PAYMENT_UNPAID
                        appointments.append(
                            (
                                f"a-{client_id}-{visit:02d}",
                                client_id,
                                "e-1" if visit % 2 == 0 else "e-2",
                                service_id,
                                to_iso(start),
                                to_iso(start + timedelta(minutes=50)),
                                status,
                                payment_status,
                                to_iso(cancelled_at),
                                "Client request" if cancelled_at else None,
                                cancelled_by,
                                to_iso(created),
                            )
                        )
                    if position % 2 == 0:
                        start = now + timedelta(days=random.randint(1, 6), hours=random.randint(1, 8))
                        appointments.append(
                            (
                                f"a-{client_id}-next",
                                client_id,
                                "e-1",
                                service_id,
                                to_iso(start),
                                to_iso(start + timedelta(minutes=50)),
                                STATUS_SCHEDULED,
                                PAYMENT_UNPAID,
                                None,
                                None,
                                None,
                                to_iso(now - timedelta(days=1)),
                            )
                        )

                cursor.executemany(
                    """
                    INSERT INTO Appointments (
                        id, client_id, employee_id, service_id, start_at, end_at, status,
                        payment_status, cancelled_at, cancel_reason, cancelled_by, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    appointments,
                )

                waitlist = []
                for position, client_id in enumerate(client_ids):
                    if position % 3 != 1:
                        continue
                    waitlist.append(
                        (
                            f"w-{client_id}",
                            client_id,
                            random.choice(("s-1", "s-2", "s-3")),
                            random.choice((None, 0, 1, 2, 3)),
                            to_iso(now - timedelta(days=random.randint(1, 30))),
                            None,
                        )
                    )
                cursor.executemany(
                    """
                    INSERT INTO Waitlist (id, client_id, service_id, priority, created_at, notes)
                    VALUES (?, ?, ?, ?, ?, ?);
                    """,
                    waitlist,
                )
                conn.commit()
            logger.info(
                "Synthetic seed completed | clients=%s | appointments=%s | waitlist=%s",
                len(client_ids),
                len(appointments),
                len(waitlist),
            )
        except sqlite3.Error as exc:
            raise RuntimeError(f"Synthetic data seeding failed: {exc}") from exc

    def list_users(self, role: Optional[str] = None) -> list[User]:
        with self._connect() as conn:
            cursor = conn.cursor()
            if role is None:
                cursor.execute("SELECT id, name, role, email, phone FROM Users ORDER BY id ASC;")
            else:
                cursor.execute(
                    "SELECT id, name, role, email, phone FROM Users WHERE role = ? ORDER BY id ASC;",
                    (role,),
                )
            return [
                User(
                    user_id=str(row["id"]),
                    name=str(row["name"]),
                    role=str(row["role"]),
                    email=_optional_str(row["email"]),
                    phone=_optional_str(row["phone"]),
                )
                for row in cursor.fetchall()
            ]

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, name, role, email, phone FROM Users WHERE id = ?;",
                (user_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return User(
                user_id=str(row["id"]),
                name=str(row["name"]),
                role=str(row["role"]),
                email=_optional_str(row["email"]),
                phone=_optional_str(row["phone"]),
            )

    def list_services(self) -> list[Service]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT id, name, is_group FROM Services ORDER BY id ASC;")
            return [
                Service(
                    service_id=str(row["id"]),
                    name=str(row["name"]),
                    is_group=bool(row["is_group"]),
                )
                for row in cursor.fetchall()
            ]

    def list_appointments(self, client_id: Optional[str] = None) -> list[Appointment]:
        """Return appointments ordered by start time, optionally for one client."""
        query = """
            SELECT
                id, client_id, employee_id, service_id, start_at, end_at, status,
                payment_status, cancelled_at, cancel_reason, cancelled_by, created_at
            FROM Appointments
        """
        params: tuple = ()
        if client_id is not None:
            query += " WHERE client_id = ?"
            params = (client_id,)
        query += " ORDER BY start_at ASC, id ASC;"
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [
                Appointment(
                    appointment_id=str(row["id"]),
                    client_id=str(row["client_id"]),
                    employee_id=_optional_str(row["employee_id"]),
                    service_id=str(row["service_id"]),
                    start_at=str(row["start_at"]),
                    end_at=str(row["end_at"]),
                    status=str(row["status"]),
                    payment_status=str(row["payment_status"]),
                    cancelled_at=_optional_str(row["cancelled_at"]),
                    cancel_reason=_optional_str(row["cancel_reason"]),
                    cancelled_by=_optional_str(row["cancelled_by"]),
                    created_at=_optional_str(row["created_at"]),
                )
                for row in cursor.fetchall()
            ]

    def list_waitlist(
        self,
        service_id: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> list[WaitlistEntry]:
        """Return waitlist entries in first-come order."""
        clauses = []
        params: list[str] = []
        if service_id is not None:
            clauses.append("service_id = ?")
            params.append(service_id)
        if client_id is not None:
            clauses.append("client_id = ?")
            params.append(client_id)
        query = "SELECT id, client_id, service_id, priority, created_at, notes FROM Waitlist"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at ASC, rowid ASC;"
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(query, tuple(params))
            return [
                WaitlistEntry(
                    entry_id=str(row["id"]),
                    client_id=str(row["client_id"]),
                    service_id=str(row["service_id"]),
                    priority=None if row["priority"] is None else int(row["priority"]),
                    created_at=str(row["created_at"]),
                    notes=_optional_str(row["notes"]),
                )
                for row in cursor.fetchall()
            ]

    def create_user(self, user: User) -> str:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO Users (id, name, role, email, phone) VALUES (?, ?, ?, ?, ?);",
                (user.user_id, user.name, user.role, user.email, user.phone),
            )
            conn.commit()
        return user.user_id

    def create_service(self, service: Service) -> str:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO Services (id, name, is_group) VALUES (?, ?, ?);",
                (service.service_id, service.name, int(service.is_group)),
            )
            conn.commit()
        return service.service_id

    def create_appointment(self, appointment: Appointment) -> str:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Appointments (
                    id, client_id, employee_id, service_id, start_at, end_at, status,
                    payment_status, cancelled_at, cancel_reason, cancelled_by, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    appointment.appointment_id,
                    appointment.client_id,
                    appointment.employee_id,
                    appointment.service_id,
                    appointment.start_at,
                    appointment.end_at,
                    appointment.status,
                    appointment.payment_status,
                    appointment.cancelled_at,
                    appointment.cancel_reason,
                    appointment.cancelled_by,
                    appointment.created_at,
                ),
            )
            conn.commit()
        return appointment.appointment_id

    def create_waitlist_entry(self, entry: WaitlistEntry) -> str:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Waitlist (id, client_id, service_id, priority, created_at, notes)
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (
                    entry.entry_id,
                    entry.client_id,
                    entry.service_id,
                    entry.priority,
                    entry.created_at,
                    entry.notes,
                ),
            )
            conn.commit()
        return entry.entry_id

    def save_evaluation_record(self, record: EvaluationRecord) -> None:
        """Persist one profile evaluation for the behavior audit log."""
        previous = record.previous_scores
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO BehaviorEvaluations (
                    id,
                    client_id,
                    evaluated_at,
                    previous_reliability,
                    previous_engagement,
                    previous_cancellation_risk,
                    new_reliability,
                    new_engagement,
                    new_cancellation_risk,
                    reason,
                    trigger_event
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    record.record_id,
                    record.client_id,
                    to_iso(record.evaluated_at),
                    previous.reliability_score if previous else None,
                    previous.engagement_score if previous else None,
                    previous.cancellation_risk_score if previous else None,
                    record.new_scores.reliability_score,
                    record.new_scores.engagement_score,
                    record.new_scores.cancellation_risk_score,
                    record.reason,
                    record.trigger_event,
                ),
            )
            conn.commit()

    def list_evaluation_records(self, client_id: str, limit: int = 50) -> list[EvaluationRecord]:
        """Return a client's evaluations, newest first."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT *
                FROM BehaviorEvaluations
                WHERE client_id = ?
                ORDER BY evaluated_at DESC, rowid DESC
                LIMIT ?;
                """,
                (client_id, limit),
            )
            return [
                EvaluationRecord(
                    record_id=str(row["id"]),
                    client_id=str(row["client_id"]),
                    evaluated_at=parse_timestamp(str(row["evaluated_at"])),
                    previous_scores=_scores_from_row(row, "previous"),
                    new_scores=_scores_from_row(row, "new"),
                    reason=str(row["reason"]),
                    trigger_event=_optional_str(row["trigger_event"]),
                )
                for row in cursor.fetchall()
            ]

    def get_latest_evaluation(self, client_id: str) -> Optional[EvaluationRecord]:
        records = self.list_evaluation_records(client_id, limit=1)
        return records[0] if records else None

    def count_evaluation_records(self) -> int:
        """Return persisted evaluation count for diagnostics and tests."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM BehaviorEvaluations;")
            return int(cursor.fetchone()["count"])

    def count_appointments(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM Appointments;")
            return int(cursor.fetchone()["count"])
