"""
CareDesk — Triage API Server
============================
FastAPI backend for the consultation desk and the staff dashboard:
AI gateway, patient registry, hospital bed management, the ambulance
fleet and analysis of uploaded medical reports.

Run:
    pip install -e .
    python caredesk_server.py

Then open: http://localhost:5000/docs
"""
from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import uvicorn
from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

# ── path setup ────────────────────────────────────────────────────────────────
ROOT = Path(__file__).parent
sys.path.insert(0, str(ROOT))

from caredesk.ambulance_fleet import AmbulanceFleet
from caredesk.document_analyzer import MAX_DOCUMENT_BYTES, DocumentAnalyzer, DocumentRejected
from caredesk.hospital_directory import HospitalDirectory
from caredesk.locales import DEFAULT_LOCALE
from caredesk.patient_registry import PatientRegistry
from caredesk.severity import DEFAULT_SEVERITY
from caredesk.triage_engine import TriageEngine

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ── init ──────────────────────────────────────────────────────────────────────
registry = PatientRegistry()
directory = HospitalDirectory()
fleet = AmbulanceFleet(directory)
engine = TriageEngine()
analyzer = DocumentAnalyzer(engine)

app = FastAPI(title="CareDesk Triage API", version="1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── request bodies ────────────────────────────────────────────────────────────

class AnalyzeRequest(BaseModel):
    symptoms: str = ""
    history: str = ""
    language: str = DEFAULT_LOCALE


class ReportRequest(BaseModel):
    name: str = ""
    age: Union[int, str] = ""
    symptoms: str = ""
    history: str = ""
    language: str = DEFAULT_LOCALE


class ChatMessageIn(BaseModel):
    role: str
    content: str = ""


class ChatRequest(BaseModel):
    messages: list[ChatMessageIn] = []
    language: str = DEFAULT_LOCALE


class PatientCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    age: int = 0
    symptoms: str = ""
    history: str = ""
    severity: str = DEFAULT_SEVERITY
    language_used: str = Field(DEFAULT_LOCALE, alias="languageUsed")
    ai_analysis: str = Field("", alias="aiAnalysis")


class BedUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    available_beds: int = Field(alias="availableBeds")
    available_icu_beds: int = Field(alias="availableIcuBeds")


class HospitalCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    district: str = ""
    address: str = ""
    lat: float
    lng: float
    total_beds: int = Field(100, alias="totalBeds")
    available_beds: int = Field(50, alias="availableBeds")
    icu_beds: int = Field(10, alias="icuBeds")
    available_icu_beds: int = Field(5, alias="availableIcuBeds")
    contact: str = ""
    specialties: list[str] = []


class AmbulanceCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    vehicle_number: str = Field(alias="vehicleNumber")
    driver_name: str = Field(alias="driverName")
    contact: str = ""
    lat: float
    lng: float
    status: str = "available"
    hospital_id: Optional[int] = Field(None, alias="hospitalId")
    district: str = "Bhagalpur"


class LocationUpdate(BaseModel):
    lat: float
    lng: float
    status: Optional[str] = None


# ── AI gateway ────────────────────────────────────────────────────────────────

@app.post("/api/ai/analyze")
def api_analyze(body: AnalyzeRequest):
    """Severity level and short recommendations for the given symptoms."""
    analysis = engine.analyze_severity(body.symptoms, body.history, body.language)
    return {"success": True, "analysis": analysis}


@app.post("/api/ai/report")
def api_report(body: ReportRequest):
    """Full consultation report from the intake answers."""
    report = engine.generate_report(
        body.name, str(body.age), body.symptoms, body.history, body.language
    )
    return {"success": True, "report": report}


@app.post("/api/ai/chat")
def api_chat(body: ChatRequest):
    result = engine.chat([m.model_dump() for m in body.messages], body.language)
    return {"success": True, **result}


# ── patients ──────────────────────────────────────────────────────────────────

@app.post("/api/patients", status_code=201)
def api_create_patient(body: PatientCreate):
    if not body.name.strip():
        raise HTTPException(400, "Patient name is required")
    patient = registry.add_patient(body.model_dump())
    if patient is None:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to save patient"},
        )
    return {"success": True, "patient": patient}


@app.get("/api/patients")
def api_list_patients(limit: int = 100):
    return {"success": True, "patients": registry.get_all_patients(limit=limit)}


@app.get("/api/patients/{patient_id}")
def api_get_patient(patient_id: str):
    patient = registry.get_patient(patient_id)
    if patient is None:
        raise HTTPException(404, "Patient not found")
    return {"success": True, "patient": patient}


@app.delete("/api/patients/{patient_id}")
def api_delete_patient(patient_id: str):
    if not registry.delete_patient(patient_id):
        raise HTTPException(404, "Patient not found")
    return {"success": True, "message": "Patient deleted"}


# ── hospitals ─────────────────────────────────────────────────────────────────

@app.get("/api/hospitals")
def api_list_hospitals(district: Optional[str] = None):
    return {"success": True, "hospitals": directory.list_hospitals(district)}


@app.post("/api/hospitals", status_code=201)
def api_create_hospital(body: HospitalCreate):
    try:
        hospital = directory.add_hospital(body.model_dump())
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    if hospital is None:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to save hospital"},
        )
    return {"success": True, "hospital": hospital}


@app.get("/api/hospitals/nearest")
def api_nearest_hospitals(lat: float, lng: float, count: int = 3):
    """Hospitals closest to a point, nearest first."""
    return {"success": True, "hospitals": directory.find_nearest(lat, lng, count)}


@app.get("/api/hospitals/{hospital_id}")
def api_get_hospital(hospital_id: int):
    hospital = directory.get_hospital(hospital_id)
    if hospital is None:
        raise HTTPException(404, "Hospital not found")
    return {"success": True, "hospital": hospital}


@app.put("/api/hospitals/{hospital_id}/beds")
def api_update_beds(hospital_id: int, body: BedUpdate):
    try:
        hospital = directory.update_beds(
            hospital_id, body.available_beds, body.available_icu_beds
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    if hospital is None:
        raise HTTPException(404, "Hospital not found")
    return {"success": True, "hospital": hospital}


# ── ambulances ────────────────────────────────────────────────────────────────

@app.get("/api/ambulances")
def api_list_ambulances(district: Optional[str] = None):
    return {"success": True, "ambulances": fleet.list_ambulances(district)}


@app.post("/api/ambulances", status_code=201)
def api_create_ambulance(body: AmbulanceCreate):
    try:
        ambulance = fleet.add_ambulance(body.model_dump())
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    if ambulance is None:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to save ambulance"},
        )
    return {"success": True, "ambulance": ambulance}


@app.put("/api/ambulances/{ambulance_id}/location")
def api_update_ambulance_location(ambulance_id: int, body: LocationUpdate):
    """Move a vehicle; ``status`` is optional."""
    try:
        ambulance = fleet.update_location(ambulance_id, body.lat, body.lng, body.status)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    if ambulance is None:
        raise HTTPException(404, "Ambulance not found")
    return {"success": True, "ambulance": ambulance}


# ── documents ─────────────────────────────────────────────────────────────────

@app.post("/api/documents/analyze")
def api_analyze_document(
    document: Optional[UploadFile] = File(None),
    language: str = Form(DEFAULT_LOCALE),
):
    """Analyze an uploaded medical report (PDF, image, Word or text, up to 10 MB)."""
    if document is None:
        raise HTTPException(400, "No file uploaded")
    # one byte over the limit is enough to reject the upload
    data = document.file.read(MAX_DOCUMENT_BYTES + 1)
    try:
        result = analyzer.analyze(
            document.filename or "", data, document.content_type or "", language
        )
    except DocumentRejected as exc:
        raise HTTPException(400, str(exc))
    return {"success": True, **result}


# ── service ───────────────────────────────────────────────────────────────────

@app.get("/api/health")
def api_health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "ai_configured": engine.is_configured,
    }


@app.get("/api/stats")
def api_stats():
    """Patient counts by severity, bed totals and ambulances by status."""
    return {
        "success": True,
        "patients": registry.get_severity_stats(),
        "beds": directory.get_bed_totals(),
        "ambulances": fleet.get_status_counts(),
    }


if __name__ == "__main__":
    port = int(os.getenv("PORT", "5000"))
    print("\n" + "═" * 58)
    print("  🏥  CareDesk — Triage API")
    print("═" * 58)
    print(f"  ➜  API:        http://localhost:{port}/api")
    print(f"  ➜  API docs:   http://localhost:{port}/docs")
    print(f"  ➜  DB path:    {registry.db_path}")
    print(f"  ➜  AI model:   {engine.model if engine.is_configured else 'fallback rules'}")
    print("═" * 58 + "\n")
    uvicorn.run(app, host="0.0.0.0", port=port, reload=False, log_level="warning")
