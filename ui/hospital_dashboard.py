"""
Hospital Staff Dashboard - CareDesk
===================================
Staff view of the consultation desk: registered patients with their
AI severity assessment, bed management for every hospital, and the
ambulance fleet with its dispatch status.

Bed edits are staged in a ``BedEditBuffer`` and only written when the
staff member saves them.

Run: streamlit run ui/hospital_dashboard.py --server.port 8502
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import pandas as pd
import streamlit as st

# ---------------------------------------------------------------------------
# Project root on sys.path so caredesk.* imports work regardless of cwd
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from caredesk.ambulance_fleet import AMBULANCE_STATUSES, AmbulanceFleet
from caredesk.hospital_directory import BedEditBuffer, HospitalDirectory
from caredesk.locales import LANGUAGE_NAMES
from caredesk.patient_registry import PatientRegistry
from caredesk.severity import (
    SEVERITY_COLORS,
    SEVERITY_CRITICAL,
    SEVERITY_HIGH,
    SEVERITY_LEVELS,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

st.set_page_config(
    page_title="CareDesk Dashboard",
    page_icon="🏥",
    layout="wide",
)

st.markdown("""
<style>
.block-container { padding: 1rem 2rem; }
.stButton > button { min-height: 44px; border-radius: 8px; }
</style>
""", unsafe_allow_html=True)


# ---------------------------------------------------------------------------
# Shared service instances (cached across reruns)
# ---------------------------------------------------------------------------
@st.cache_resource
def get_registry() -> PatientRegistry:
    return PatientRegistry()


@st.cache_resource
def get_directory() -> HospitalDirectory:
    return HospitalDirectory()


@st.cache_resource
def get_fleet() -> AmbulanceFleet:
    return AmbulanceFleet(get_directory())


patient_registry = get_registry()
hospital_directory = get_directory()
ambulance_fleet = get_fleet()


def get_bed_buffer() -> BedEditBuffer:
    """Per-browser-session edit buffer."""
    if "bed_buffer" not in st.session_state:
        st.session_state.bed_buffer = BedEditBuffer(hospital_directory)
    return st.session_state.bed_buffer


# ---------------------------------------------------------------------------
# Patient records
# ---------------------------------------------------------------------------
def render_patients() -> None:
    patients = patient_registry.get_all_patients(limit=200)
    if not patients:
        st.info("No patient records yet. Waiting for consultations...")
        return

    severity_filter = st.multiselect(
        "Severity", SEVERITY_LEVELS, default=list(SEVERITY_LEVELS)
    )

    try:
        df = pd.DataFrame(patients)
        df = df[df["severity"].isin(severity_filter)]
        df["severity"] = df["severity"].map(
            lambda level: f"{SEVERITY_COLORS.get(level, '⚪')} {level}"
        )
        df["language_used"] = df["language_used"].map(
            lambda code: LANGUAGE_NAMES.get(code, code)
        )
        desired_cols = [
            "patient_id", "name", "age", "severity", "symptoms",
            "history", "ai_analysis", "language_used", "timestamp",
        ]
        available_cols = [c for c in desired_cols if c in df.columns]
        st.dataframe(df[available_cols], use_container_width=True, hide_index=True)
    except Exception as exc:
        logger.error("DataFrame render error: %s", exc)
        for p in patients:
            st.write(p)

    with st.expander("🗑 Delete a record"):
        ids = [p["patient_id"] for p in patients]
        target = st.selectbox("Patient ID", ids)
        if st.button("Delete", type="secondary"):
            if patient_registry.delete_patient(target):
                st.success(f"{target} deleted.")
            st.rerun()


# ---------------------------------------------------------------------------
# Bed management
# ---------------------------------------------------------------------------
def render_hospital_beds(hospital: dict, buffer: BedEditBuffer) -> None:
    hid = hospital["id"]
    pending = buffer.pending(hid)

    with st.container(border=True):
        st.markdown(f"**{hospital['name']}**  \n{hospital['address']} · {hospital['contact']}")
        st.caption(", ".join(hospital.get("specialties", [])))

        col1, col2 = st.columns(2)
        beds = col1.number_input(
            f"General beds (of {hospital['total_beds']})",
            min_value=0,
            max_value=hospital["total_beds"],
            value=pending.get("available_beds", hospital["available_beds"]),
            key=f"beds_{hid}",
        )
        icu = col2.number_input(
            f"ICU beds (of {hospital['icu_beds']})",
            min_value=0,
            max_value=hospital["icu_beds"],
            value=pending.get("available_icu_beds", hospital["available_icu_beds"]),
            key=f"icu_{hid}",
        )

        try:
            if beds != hospital["available_beds"] or "available_beds" in pending:
                buffer.stage(hid, "available_beds", int(beds))
            if icu != hospital["available_icu_beds"] or "available_icu_beds" in pending:
                buffer.stage(hid, "available_icu_beds", int(icu))
        except ValueError as exc:
            st.error(str(exc))

        if not buffer.has_changes(hid):
            return

        save_col, discard_col = st.columns(2)
        if save_col.button("💾 Save", key=f"save_{hid}", type="primary", use_container_width=True):
            if buffer.commit(hid) is None:
                st.error("Could not save bed changes.")
            else:
                st.rerun()
        if discard_col.button("↩️ Discard", key=f"discard_{hid}", use_container_width=True):
            buffer.discard(hid)
            st.session_state.pop(f"beds_{hid}", None)
            st.session_state.pop(f"icu_{hid}", None)
            st.rerun()


def render_beds() -> None:
    buffer = get_bed_buffer()
    hospitals = hospital_directory.list_hospitals()
    if not hospitals:
        st.info("No hospitals registered.")
        return
    for hospital in hospitals:
        render_hospital_beds(hospital, buffer)


# ---------------------------------------------------------------------------
# Ambulances
# ---------------------------------------------------------------------------
def render_ambulances() -> None:
    ambulances = ambulance_fleet.list_ambulances()
    if not ambulances:
        st.info("No ambulances registered.")
        return

    df = pd.DataFrame(ambulances)
    cols = [
        "vehicle_number", "driver_name", "contact", "status",
        "hospital_name", "lat", "lng", "updated_at",
    ]
    st.dataframe(df[[c for c in cols if c in df.columns]], use_container_width=True, hide_index=True)

    with st.expander("🚑 Update status"):
        by_vehicle = {a["vehicle_number"]: a for a in ambulances}
        vehicle = st.selectbox("Vehicle", list(by_vehicle))
        current = by_vehicle[vehicle]
        status = st.selectbox(
            "Status", AMBULANCE_STATUSES, index=AMBULANCE_STATUSES.index(current["status"])
        )
        if st.button("Update", type="primary"):
            try:
                ambulance_fleet.update_location(current["id"], current["lat"], current["lng"], status)
                st.success(f"{vehicle} is now {status}.")
            except ValueError as exc:
                st.error(str(exc))
            st.rerun()


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main() -> None:
    now_str = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    st.title("🏥 CareDesk Staff Dashboard")
    st.caption(f"AI consultation records · {now_str}")

    stats = patient_registry.get_severity_stats()
    by_severity = stats["by_severity"]
    totals = hospital_directory.get_bed_totals()

    cols = st.columns(6)
    cols[0].metric("Patients", stats["total"])
    cols[1].metric("🔴 Critical", by_severity.get(SEVERITY_CRITICAL, 0))
    cols[2].metric("🟠 High", by_severity.get(SEVERITY_HIGH, 0))
    cols[3].metric("🟡 Medium", by_severity.get(SEVERITY_MEDIUM, 0))
    cols[4].metric("🟢 Low", by_severity.get(SEVERITY_LOW, 0))
    cols[5].metric(
        "Free beds (ICU)",
        f"{totals['available_beds']} ({totals['available_icu_beds']})",
    )

    st.divider()

    tab_patients, tab_beds, tab_ambulances = st.tabs(
        ["📋 Patient Records", "🛏️ Bed Management", "🚑 Ambulances"]
    )
    with tab_patients:
        render_patients()
    with tab_beds:
        render_beds()
    with tab_ambulances:
        render_ambulances()

    with st.sidebar:
        st.markdown("### 🏥 CareDesk")
        st.divider()
        st.markdown("**Severity Levels**")
        for level in reversed(SEVERITY_LEVELS):
            st.markdown(f"{SEVERITY_COLORS[level]} **{level}**")
        st.divider()
        if st.button("🔄 Refresh Now", use_container_width=True):
            st.rerun()


if __name__ == "__main__":
    main()
