"""
Ambulance Fleet Module
======================
Ambulances attached to the directory's hospitals: their position and
dispatch status. Shares the SQLite database of the hospital directory
and is seeded with the Bhagalpur demo fleet on first use.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from caredesk.hospital_directory import HospitalDirectory

logger = logging.getLogger(__name__)

STATUS_AVAILABLE = "available"
STATUS_EN_ROUTE = "en-route"
STATUS_BUSY = "busy"
STATUS_OFFLINE = "offline"

AMBULANCE_STATUSES: tuple[str, ...] = (
    STATUS_AVAILABLE,
    STATUS_EN_ROUTE,
    STATUS_BUSY,
    STATUS_OFFLINE,
)

# hospital is matched by name against the seeded directory
SEED_AMBULANCES: list[dict] = [
    {"vehicle_number": "BR07-AMB-1001", "driver_name": "Rajesh Kumar", "contact": "+91-9876543210",
     "lat": 25.2420, "lng": 86.9750, "status": STATUS_AVAILABLE,
     "hospital": "Jawaharlal Nehru Medical College & Hospital"},
    {"vehicle_number": "BR07-AMB-1002", "driver_name": "Amit Singh", "contact": "+91-9876543211",
     "lat": 25.2480, "lng": 86.9690, "status": STATUS_EN_ROUTE,
     "hospital": "Jawaharlal Nehru Medical College & Hospital"},
    {"vehicle_number": "BR07-AMB-2001", "driver_name": "Suresh Yadav", "contact": "+91-9876543212",
     "lat": 25.2550, "lng": 86.9640, "status": STATUS_AVAILABLE, "hospital": "Mayaganj Hospital"},
    {"vehicle_number": "BR07-AMB-2002", "driver_name": "Vikram Verma", "contact": "+91-9876543213",
     "lat": 25.2530, "lng": 86.9880, "status": STATUS_BUSY, "hospital": "Mayaganj Hospital"},
    {"vehicle_number": "BR07-AMB-3001", "driver_name": "Manoj Tiwari", "contact": "+91-9876543214",
     "lat": 25.2460, "lng": 86.9800, "status": STATUS_AVAILABLE, "hospital": "Sadar Hospital Bhagalpur"},
    {"vehicle_number": "BR07-AMB-4001", "driver_name": "Deepak Sharma", "contact": "+91-9876543215",
     "lat": 25.2380, "lng": 86.9950, "status": STATUS_AVAILABLE, "hospital": "Apollo Clinic Bhagalpur"},
    {"vehicle_number": "BR07-AMB-4002", "driver_name": "Rahul Gupta", "contact": "+91-9876543216",
     "lat": 25.2400, "lng": 86.9890, "status": STATUS_EN_ROUTE, "hospital": "Apollo Clinic Bhagalpur"},
    {"vehicle_number": "BR07-AMB-5001", "driver_name": "Arun Mishra", "contact": "+91-9876543217",
     "lat": 25.2600, "lng": 86.9980, "status": STATUS_AVAILABLE, "hospital": "Sneh Lata Hospital"},
]

_SELECT = """
    SELECT a.*, h.name AS hospital_name
    FROM ambulances a
    LEFT JOIN hospitals h ON h.id = a.hospital_id
"""


def check_status(status: str) -> None:
    if status not in AMBULANCE_STATUSES:
        raise ValueError(
            f"status must be one of {', '.join(AMBULANCE_STATUSES)}, got {status!r}"
        )


def check_position(lat: float, lng: float) -> None:
    """Raise ValueError unless the point is a valid GPS coordinate."""
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise ValueError(f"Invalid position ({lat}, {lng})")


class AmbulanceFleet:
    """SQLite-backed ambulance fleet.

    Args:
        directory: Hospital directory whose database and hospitals the
            fleet refers to.
        seed: Insert the demo fleet when the table is empty.
    """

    def __init__(self, directory: HospitalDirectory, seed: bool = True) -> None:
        self.directory = directory
        self.db_path = directory.db_path
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
                CREATE TABLE IF NOT EXISTS ambulances (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    vehicle_number TEXT NOT NULL UNIQUE,
                    driver_name TEXT NOT NULL,
                    contact TEXT DEFAULT '',
                    lat REAL NOT NULL,
                    lng REAL NOT NULL,
                    status TEXT NOT NULL DEFAULT 'available',
                    hospital_id INTEGER,
                    district TEXT DEFAULT 'Bhagalpur',
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.commit()
            conn.close()
        except Exception as exc:
            logger.error("Failed to create ambulances table: %s", exc)

    def _seed(self) -> None:
        try:
            conn = self._get_connection()
            count = conn.execute("SELECT COUNT(*) FROM ambulances").fetchone()[0]
            if count == 0:
                hospital_ids = {
                    h["name"]: h["id"] for h in self.directory.list_hospitals()
                }
                for ambulance in SEED_AMBULANCES:
                    record = dict(ambulance, district="Bhagalpur")
                    record["hospital_id"] = hospital_ids.get(record.pop("hospital"))
                    self._insert(conn, record)
                conn.commit()
                logger.info("Seeded %d ambulances.", len(SEED_AMBULANCES))
            conn.close()
        except Exception as exc:
            logger.error("Failed to seed ambulances: %s", exc)

    @staticmethod
    def _insert(conn: sqlite3.Connection, ambulance: dict) -> int:
        cursor = conn.execute(
            """
            INSERT INTO ambulances (
                vehicle_number, driver_name, contact, lat, lng, status,
                hospital_id, district
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                ambulance["vehicle_number"],
                ambulance["driver_name"],
                ambulance.get("contact", ""),
                ambulance["lat"],
                ambulance["lng"],
                ambulance.get("status", STATUS_AVAILABLE),
                ambulance.get("hospital_id"),
                ambulance.get("district", "Bhagalpur"),
            ),
        )
        return cursor.lastrowid

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def add_ambulance(self, ambulance: dict) -> Optional[dict]:
        """Register a vehicle.

        Raises:
            ValueError: Missing vehicle number or driver, invalid status or
                position, unknown hospital, or a vehicle number already in use.
        """
        if not str(ambulance.get("vehicle_number") or "").strip():
            raise ValueError("vehicle_number is required")
        if not str(ambulance.get("driver_name") or "").strip():
            raise ValueError("driver_name is required")
        check_status(ambulance.get("status", STATUS_AVAILABLE))
        check_position(ambulance["lat"], ambulance["lng"])
        hospital_id = ambulance.get("hospital_id")
        if hospital_id is not None and self.directory.get_hospital(hospital_id) is None:
            raise ValueError(f"Unknown hospital: {hospital_id}")

        try:
            conn = self._get_connection()
            try:
                ambulance_id = self._insert(conn, ambulance)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.IntegrityError:
            raise ValueError(
                f"Vehicle {ambulance['vehicle_number']} is already registered"
            ) from None
        except Exception as exc:
            logger.error("Failed to add ambulance: %s", exc)
            return None

        logger.info("Ambulance %s registered.", ambulance["vehicle_number"])
        return self.get_ambulance(ambulance_id)

    def list_ambulances(self, district: Optional[str] = None) -> list[dict]:
        """All vehicles with their hospital's name, optionally for one district."""
        try:
            conn = self._get_connection()
            if district:
                rows = conn.execute(
                    _SELECT + " WHERE a.district = ? ORDER BY a.vehicle_number",
                    (district,),
                ).fetchall()
            else:
                rows = conn.execute(_SELECT + " ORDER BY a.vehicle_number").fetchall()
            conn.close()
            return [dict(row) for row in rows]
        except Exception as exc:
            logger.error("Failed to list ambulances: %s", exc)
            return []

    def get_ambulance(self, ambulance_id: int) -> Optional[dict]:
        try:
            conn = self._get_connection()
            row = conn.execute(_SELECT + " WHERE a.id = ?", (ambulance_id,)).fetchone()
            conn.close()
            return dict(row) if row else None
        except Exception as exc:
            logger.error("Failed to get ambulance %s: %s", ambulance_id, exc)
            return None

    def update_location(
        self,
        ambulance_id: int,
        lat: float,
        lng: float,
        status: Optional[str] = None,
    ) -> Optional[dict]:
        """Move a vehicle and optionally change its status.

        Returns:
            The updated ambulance, or None if it does not exist.

        Raises:
            ValueError: Invalid position or status.
        """
        check_position(lat, lng)
        if status is not None:
            check_status(status)
        if self.get_ambulance(ambulance_id) is None:
            return None

        try:
            conn = self._get_connection()
            if status is None:
                conn.execute(
                    "UPDATE ambulances SET lat = ?, lng = ?, updated_at = CURRENT_TIMESTAMP "
                    "WHERE id = ?",
                    (lat, lng, ambulance_id),
                )
            else:
                conn.execute(
                    "UPDATE ambulances SET lat = ?, lng = ?, status = ?, "
                    "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (lat, lng, status, ambulance_id),
                )
            conn.commit()
            conn.close()
            logger.info("Ambulance %s at (%.4f, %.4f).", ambulance_id, lat, lng)
        except Exception as exc:
            logger.error("Failed to update ambulance %s: %s", ambulance_id, exc)
            return None

        return self.get_ambulance(ambulance_id)

    def get_status_counts(self) -> dict[str, int]:
        counts = {status: 0 for status in AMBULANCE_STATUSES}
        for ambulance in self.list_ambulances():
            if ambulance["status"] in counts:
                counts[ambulance["status"]] += 1
        return counts
