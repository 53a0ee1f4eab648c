"""
Gateway Client Module
=====================
Async HTTP clients the consultation session uses to reach the CareDesk
API: the AI gateway (``/api/ai/*``) and the patient registry
(``/api/patients``).

Every endpoint answers ``{"success": bool, ...}``. A ``success: false``
body raises ``GatewayError``; transport errors surface as
``httpx.HTTPError``. Callers turn both into local fallbacks.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional, Sequence

import httpx
from dotenv import load_dotenv

load_dotenv()
logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:5000"
DEFAULT_TIMEOUT_SECONDS = 30.0


class GatewayError(RuntimeError):
    """The API answered but reported a failure."""


class _ApiClient:
    """Shared request plumbing for the CareDesk API clients.

    Attributes:
        base_url: API root, e.g. ``http://localhost:5000``.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("CAREDESK_API_URL", DEFAULT_API_URL)).rstrip("/")
        self.timeout = float(
            timeout if timeout is not None
            else os.getenv("CAREDESK_API_TIMEOUT", DEFAULT_TIMEOUT_SECONDS)
        )
        self._transport = transport

    async def _post(self, path: str, payload: dict) -> dict:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.post(path, json=payload)
        response.raise_for_status()

        data = response.json()
        if not isinstance(data, dict) or not data.get("success"):
            error = data.get("error") if isinstance(data, dict) else None
            raise GatewayError(error or f"POST {path} failed")
        return data


class AIGatewayClient(_ApiClient):
    """Client for the server-side AI gateway."""

    async def analyze_severity(self, symptoms: str, history: str, language: str) -> dict:
        """Returns ``{severity, recommendations, aiPowered}``."""
        data = await self._post(
            "/api/ai/analyze",
            {"symptoms": symptoms, "history": history, "language": language},
        )
        return data.get("analysis") or {}

    async def generate_report(
        self,
        name: str,
        age: str,
        symptoms: str,
        history: str,
        language: str,
    ) -> dict:
        """Returns the camelCase report payload."""
        data = await self._post(
            "/api/ai/report",
            {
                "name": name,
                "age": age,
                "symptoms": symptoms,
                "history": history,
                "language": language,
            },
        )
        report = data.get("report")
        if not isinstance(report, dict):
            raise GatewayError("Report response carried no report")
        return report

    async def chat(self, messages: Sequence[dict], language: str) -> dict:
        """Returns ``{reply, aiPowered}``."""
        data = await self._post(
            "/api/ai/chat",
            {"messages": list(messages), "language": language},
        )
        return {
            "reply": data.get("reply") or "",
            "aiPowered": bool(data.get("aiPowered", False)),
        }


class PatientRegistryClient(_ApiClient):
    """Client for patient registration."""

    async def submit_patient(self, record: dict[str, Any]) -> dict:
        data = await self._post("/api/patients", record)
        patient = data.get("patient") or {}
        logger.info("Patient registered remotely: %s", patient.get("patient_id"))
        return patient
