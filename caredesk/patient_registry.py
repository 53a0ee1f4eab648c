"""
Patient Registry Module
=======================
Stores patients registered by the consultation desk. Uses SQLite for
persistent local storage; the staff dashboard reads the same table.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from uuid import uuid4

from dotenv import load_dotenv

from caredesk.locales import DEFAULT_LOCALE, SUPPORTED_LOCALES
from caredesk.severity import DEFAULT_SEVERITY, SEVERITY_LEVELS, normalize_severity

load_dotenv()
logger = logging.getLogger(__name__)

# Default database file location
DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "caredesk.db"


def resolve_db_path(db_path: Optional[str] = None) -> Path:
    """Explicit path, else ``CAREDESK_DB_PATH``, else ``data/caredesk.db``."""
    return Path(db_path or os.getenv("CAREDESK_DB_PATH") or DEFAULT_DB_PATH)


def new_patient_id() -> str:
    return f"PT-{uuid4().hex[:8].upper()}"


class PatientRegistry:
    """SQLite-backed patient records.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db_path = resolve_db_path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._create_table()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _create_table(self) -> None:
        try:
            conn = self._get_connection()
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS patients (
                    patient_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    age INTEGER DEFAULT 0,
                    symptoms TEXT DEFAULT '',
                    history TEXT DEFAULT '',
                    severity TEXT DEFAULT 'Medium',
                    language_used TEXT DEFAULT 'en-US',
                    ai_analysis TEXT DEFAULT '',
                    timestamp TEXT NOT NULL
                )
                """
            )
            conn.commit()
            conn.close()
            logger.info("Patients table ready at %s.", self.db_path)
        except Exception as exc:
            logger.error("Failed to create patients table: %s", exc)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def add_patient(self, record: dict) -> Optional[dict]:
        """Register a patient.

        Severity outside Low/Medium/High/Critical becomes ``Medium``;
        a language other than en-US/hi-IN becomes ``en-US``.

        Args:
            record: Dict with ``name``, ``age``, ``symptoms``, ``history``,
                ``severity``, ``language_used`` and ``ai_analysis``.

        Returns:
            The stored record, or None if it could not be saved.
        """
        language = record.get("language_used") or DEFAULT_LOCALE
        if language not in SUPPORTED_LOCALES:
            language = DEFAULT_LOCALE

        try:
            age = max(0, int(record.get("age") or 0))
        except (TypeError, ValueError):
            age = 0

        patient = {
            "patient_id": new_patient_id(),
            "name": str(record.get("name") or ""),
            "age": age,
            "symptoms": str(record.get("symptoms") or ""),
            "history": str(record.get("history") or ""),
            "severity": normalize_severity(record.get("severity"), default=DEFAULT_SEVERITY),
            "language_used": language,
            "ai_analysis": str(record.get("ai_analysis") or ""),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        try:
            conn = self._get_connection()
            conn.execute(
                """
                INSERT INTO patients (
                    patient_id, name, age, symptoms, history, severity,
                    language_used, ai_analysis, timestamp
                ) VALUES (
                    :patient_id, :name, :age, :symptoms, :history, :severity,
                    :language_used, :ai_analysis, :timestamp
                )
                """,
                patient,
            )
            conn.commit()
            conn.close()
            logger.info("Patient %s registered (%s).", patient["patient_id"], patient["severity"])
            return patient

        except Exception as exc:
            logger.error("Failed to register patient: %s", exc)
            return None

    def get_patient(self, patient_id: str) -> Optional[dict]:
        try:
            conn = self._get_connection()
            row = conn.execute(
                "SELECT * FROM patients WHERE patient_id = ?", (patient_id,)
            ).fetchone()
            conn.close()
            return dict(row) if row else None
        except Exception as exc:
            logger.error("Failed to get patient %s: %s", patient_id, exc)
            return None

    def get_all_patients(self, limit: int = 100) -> list[dict]:
        """Newest patients first.

        Args:
            limit: Maximum number of records.
        """
        try:
            conn = self._get_connection()
            cursor = conn.execute(
                """
                SELECT * FROM patients
                ORDER BY timestamp DESC, rowid DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = cursor.fetchall()
            conn.close()
            return [dict(row) for row in rows]

        except Exception as exc:
            logger.error("Failed to list patients: %s", exc)
            return []

    def delete_patient(self, patient_id: str) -> bool:
        """Returns True if a record was deleted."""
        try:
            conn = self._get_connection()
            cursor = conn.execute("DELETE FROM patients WHERE patient_id = ?", (patient_id,))
            conn.commit()
            deleted = cursor.rowcount > 0
            conn.close()
            if deleted:
                logger.info("Patient %s deleted.", patient_id)
            return deleted
        except Exception as exc:
            logger.error("Failed to delete patient %s: %s", patient_id, exc)
            return False

    def get_severity_stats(self) -> dict:
        """Patient counts per severity level.

        Returns:
            Dict with ``total`` and ``by_severity`` (every level present).
        """
        by_severity = {level: 0 for level in SEVERITY_LEVELS}
        try:
            conn = self._get_connection()
            cursor = conn.execute(
                """
                SELECT severity, COUNT(*) as count
                FROM patients
                GROUP BY severity
                """
            )
            for row in cursor.fetchall():
                by_severity[row["severity"]] = row["count"]
            conn.close()
        except Exception as exc:
            logger.error("Failed to get severity stats: %s", exc)

        return {"total": sum(by_severity.values()), "by_severity": by_severity}

    def clear(self) -> bool:
        """Delete every patient. Used for testing."""
        try:
            conn = self._get_connection()
            conn.execute("DELETE FROM patients")
            conn.commit()
            conn.close()
            logger.info("Patient registry cleared.")
            return True
        except Exception as exc:
            logger.error("Failed to clear patient registry: %s", exc)
            return False
