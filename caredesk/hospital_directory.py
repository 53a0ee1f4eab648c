"""
Hospital Directory Module
=========================
Hospitals, their bed availability and nearest-hospital lookup for the
staff dashboard. Stored in SQLite next to the patient registry and
seeded with the Bhagalpur demo hospitals on first use.

Bed changes made in the dashboard go through ``BedEditBuffer``: edits
are staged per hospital and either committed in one update or discarded.
"""

from __future__ import annotations

import json
import logging
import math
import sqlite3
from typing import Optional

from caredesk.patient_registry import resolve_db_path

logger = logging.getLogger(__name__)

BED_FIELDS: dict[str, str] = {
    # editable field -> capacity field bounding it
    "available_beds": "total_beds",
    "available_icu_beds": "icu_beds",
}

BED_DEFAULTS: dict[str, int] = {
    "total_beds": 100,
    "available_beds": 50,
    "icu_beds": 10,
    "available_icu_beds": 5,
}

SEED_HOSPITALS: list[dict] = [
    {
        "name": "Jawaharlal Nehru Medical College & Hospital",
        "district": "Bhagalpur",
        "address": "Mayaganj, Bhagalpur, Bihar",
        "lat": 25.2445,
        "lng": 86.9718,
        "total_beds": 200,
        "available_beds": 52,
        "icu_beds": 25,
        "available_icu_beds": 8,
        "contact": "+91-641-2400733",
        "specialties": ["General Surgery", "Orthopedics", "Cardiology", "Neurology"],
    },
    {
        "name": "Mayaganj Hospital",
        "district": "Bhagalpur",
        "address": "Mayaganj Road, Bhagalpur",
        "lat": 25.2510,
        "lng": 86.9680,
        "total_beds": 150,
        "available_beds": 38,
        "icu_beds": 20,
        "available_icu_beds": 6,
        "contact": "+91-641-2401234",
        "specialties": ["Pediatrics", "Obstetrics", "ENT", "Ophthalmology"],
    },
    {
        "name": "Sadar Hospital Bhagalpur",
        "district": "Bhagalpur",
        "address": "Khalifabagh, Bhagalpur",
        "lat": 25.2500,
        "lng": 86.9850,
        "total_beds": 120,
        "available_beds": 42,
        "icu_beds": 15,
        "available_icu_beds": 5,
        "contact": "+91-641-2500456",
        "specialties": ["Emergency", "Trauma", "General Medicine", "Dermatology"],
    },
    {
        "name": "Apollo Clinic Bhagalpur",
        "district": "Bhagalpur",
        "address": "Adampur, Bhagalpur",
        "lat": 25.2350,
        "lng": 86.9920,
        "total_beds": 80,
        "available_beds": 28,
        "icu_beds": 12,
        "available_icu_beds": 4,
        "contact": "+91-641-2600789",
        "specialties": ["Cardiology", "Gastroenterology", "Urology", "Pulmonology"],
    },
    {
        "name": "Sneh Lata Hospital",
        "district": "Bhagalpur",
        "address": "Tilkamanjhi, Bhagalpur",
        "lat": 25.2580,
        "lng": 87.0010,
        "total_beds": 100,
        "available_beds": 35,
        "icu_beds": 10,
        "available_icu_beds": 3,
        "contact": "+91-641-2700321",
        "specialties": ["Oncology", "Nephrology", "Endocrinology", "General Surgery"],
    },
]


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two GPS points in kilometres."""
    R = 6371  # Earth radius in km
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.asin(math.sqrt(a))
    return R * c


def check_bed_count(value: int, capacity: int, label: str) -> None:
    """Raise ValueError unless ``0 <= value <= capacity``."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{label} must be an integer")
    if value < 0 or value > capacity:
        raise ValueError(f"{label} must be between 0 and {capacity}, got {value}")


class HospitalDirectory:
    """SQLite-backed hospital directory.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: Optional[str] = None, seed: bool = True) -> None:
        self.db_path = resolve_db_path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._create_table()
        if seed:
            self._seed()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _create_table(self) -> None:
        try:
            conn = self._get_connection()
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS hospitals (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    district TEXT NOT NULL,
                    address TEXT DEFAULT '',
                    lat REAL NOT NULL,
                    lng REAL NOT NULL,
                    total_beds INTEGER NOT NULL DEFAULT 100,
                    available_beds INTEGER NOT NULL DEFAULT 50,
                    icu_beds INTEGER DEFAULT 10,
                    available_icu_beds INTEGER DEFAULT 5,
                    contact TEXT DEFAULT '',
                    specialties TEXT DEFAULT '[]'
                )
                """
            )
            conn.commit()
            conn.close()
        except Exception as exc:
            logger.error("Failed to create hospitals table: %s", exc)

    def _seed(self) -> None:
        try:
            conn = self._get_connection()
            count = conn.execute("SELECT COUNT(*) FROM hospitals").fetchone()[0]
            if count == 0:
                for hospital in SEED_HOSPITALS:
                    self._insert(conn, hospital)
                conn.commit()
                logger.info("Seeded %d hospitals.", len(SEED_HOSPITALS))
            conn.close()
        except Exception as exc:
            logger.error("Failed to seed hospitals: %s", exc)

    @staticmethod
    def _insert(conn: sqlite3.Connection, hospital: dict) -> int:
        cursor = conn.execute(
            """
            INSERT INTO hospitals (
                name, district, address, lat, lng, total_beds, available_beds,
                icu_beds, available_icu_beds, contact, specialties
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                hospital["name"],
                hospital.get("district", ""),
                hospital.get("address", ""),
                hospital["lat"],
                hospital["lng"],
                hospital.get("total_beds", BED_DEFAULTS["total_beds"]),
                hospital.get("available_beds", BED_DEFAULTS["available_beds"]),
                hospital.get("icu_beds", BED_DEFAULTS["icu_beds"]),
                hospital.get("available_icu_beds", BED_DEFAULTS["available_icu_beds"]),
                hospital.get("contact", ""),
                json.dumps(hospital.get("specialties", [])),
            ),
        )
        return cursor.lastrowid

    @staticmethod
    def _to_dict(row: sqlite3.Row) -> dict:
        hospital = dict(row)
        try:
            hospital["specialties"] = json.loads(hospital.get("specialties") or "[]")
        except (json.JSONDecodeError, TypeError):
            hospital["specialties"] = []
        return hospital

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def add_hospital(self, hospital: dict) -> Optional[dict]:
        """Insert a hospital and return it, or None if the insert failed.

        Raises:
            ValueError: Missing name, or availability outside its capacity.
        """
        if not str(hospital.get("name") or "").strip():
            raise ValueError("name is required")
        for field, capacity in BED_FIELDS.items():
            check_bed_count(
                hospital.get(field, BED_DEFAULTS[field]),
                hospital.get(capacity, BED_DEFAULTS[capacity]),
                field,
            )

        try:
            conn = self._get_connection()
            hospital_id = self._insert(conn, hospital)
            conn.commit()
            conn.close()
            logger.info("Hospital '%s' added.", hospital["name"])
            return self.get_hospital(hospital_id)
        except Exception as exc:
            logger.error("Failed to add hospital: %s", exc)
            return None

    def list_hospitals(self, district: Optional[str] = None) -> list[dict]:
        """All hospitals sorted by name, optionally for one district."""
        try:
            conn = self._get_connection()
            if district:
                rows = conn.execute(
                    "SELECT * FROM hospitals WHERE district = ? ORDER BY name",
                    (district,),
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM hospitals ORDER BY name").fetchall()
            conn.close()
            return [self._to_dict(row) for row in rows]
        except Exception as exc:
            logger.error("Failed to list hospitals: %s", exc)
            return []

    def get_hospital(self, hospital_id: int) -> Optional[dict]:
        try:
            conn = self._get_connection()
            row = conn.execute(
                "SELECT * FROM hospitals WHERE id = ?", (hospital_id,)
            ).fetchone()
            conn.close()
            return self._to_dict(row) if row else None
        except Exception as exc:
            logger.error("Failed to get hospital %s: %s", hospital_id, exc)
            return None

    def update_beds(
        self,
        hospital_id: int,
        available_beds: int,
        available_icu_beds: int,
    ) -> Optional[dict]:
        """Set both availability counters of a hospital.

        Returns:
            The updated hospital, or None if it does not exist.

        Raises:
            ValueError: A count is negative or exceeds the hospital's capacity.
        """
        hospital = self.get_hospital(hospital_id)
        if hospital is None:
            return None

        check_bed_count(available_beds, hospital["total_beds"], "available_beds")
        check_bed_count(available_icu_beds, hospital["icu_beds"], "available_icu_beds")

        try:
            conn = self._get_connection()
            conn.execute(
                """
                UPDATE hospitals
                SET available_beds = ?, available_icu_beds = ?
                WHERE id = ?
                """,
                (available_beds, available_icu_beds, hospital_id),
            )
            conn.commit()
            conn.close()
            logger.info(
                "Hospital %s beds → %d general, %d ICU.",
                hospital_id, available_beds, available_icu_beds,
            )
        except Exception as exc:
            logger.error("Failed to update beds for hospital %s: %s", hospital_id, exc)
            return None

        return self.get_hospital(hospital_id)

    def find_nearest(self, lat: float, lng: float, count: int = 3) -> list[dict]:
        """Hospitals closest to a point, each with ``distance_km``."""
        scored = []
        for hospital in self.list_hospitals():
            hospital["distance_km"] = round(
                haversine_distance(lat, lng, hospital["lat"], hospital["lng"]), 1
            )
            scored.append(hospital)

        scored.sort(key=lambda h: h["distance_km"])
        nearest = scored[:count]
        logger.info(
            "Nearest hospitals for (%.4f, %.4f): %s",
            lat, lng, nearest[0]["name"] if nearest else "N/A",
        )
        return nearest

    def get_bed_totals(self) -> dict:
        totals = {
            "total_beds": 0,
            "available_beds": 0,
            "icu_beds": 0,
            "available_icu_beds": 0,
        }
        for hospital in self.list_hospitals():
            for key in totals:
                totals[key] += hospital.get(key) or 0
        return totals


class BedEditBuffer:
    """Uncommitted bed edits, kept per hospital.

    Staged values are validated against the hospital's capacity at once.
    ``commit`` writes both counters in one update, taking fields that were
    not edited from the stored record; the buffer for that hospital is
    cleared only when the update succeeds.
    """

    def __init__(self, directory: HospitalDirectory) -> None:
        self.directory = directory
        self._pending: dict[int, dict[str, int]] = {}

    def stage(self, hospital_id: int, field: str, value: int) -> None:
        """Record an edit.

        Raises:
            ValueError: Unknown field, unknown hospital or out-of-range value.
        """
        if field not in BED_FIELDS:
            raise ValueError(f"Unknown bed field: {field}")
        hospital = self.directory.get_hospital(hospital_id)
        if hospital is None:
            raise ValueError(f"Unknown hospital: {hospital_id}")
        check_bed_count(value, hospital[BED_FIELDS[field]], field)
        self._pending.setdefault(hospital_id, {})[field] = value

    def pending(self, hospital_id: int) -> dict[str, int]:
        return dict(self._pending.get(hospital_id, {}))

    def has_changes(self, hospital_id: int) -> bool:
        return bool(self._pending.get(hospital_id))

    def discard(self, hospital_id: int) -> None:
        self._pending.pop(hospital_id, None)

    def commit(self, hospital_id: int) -> Optional[dict]:
        """Write staged edits. Returns the updated hospital or None."""
        edits = self._pending.get(hospital_id)
        if not edits:
            return self.directory.get_hospital(hospital_id)

        hospital = self.directory.get_hospital(hospital_id)
        if hospital is None:
            return None

        try:
            updated = self.directory.update_beds(
                hospital_id,
                edits.get("available_beds", hospital["available_beds"]),
                edits.get("available_icu_beds", hospital["available_icu_beds"]),
            )
        except ValueError as exc:
            logger.error("Bed edit for hospital %s rejected: %s", hospital_id, exc)
            return None

        if updated is not None:
            self._pending.pop(hospital_id, None)
        return updated
