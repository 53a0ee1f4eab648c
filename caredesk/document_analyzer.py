"""
Document Analyzer Module
========================
Checks medical reports uploaded by patients, extracts their text and
hands them to the triage engine for a short analysis.

Plain-text files are read directly. PDFs, images and Word files go
through Azure AI Document Intelligence (prebuilt layout model) when it
is configured; otherwise the analysis is based on the file metadata
alone.
"""

from __future__ import annotations

import logging
import os
from pathlib import PurePath
from typing import Optional

from dotenv import load_dotenv

from caredesk.locales import DEFAULT_LOCALE
from caredesk.triage_engine import TriageEngine

load_dotenv()
logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS: tuple[str, ...] = (
    ".pdf", ".jpg", ".jpeg", ".png", ".webp", ".doc", ".docx", ".txt",
)
MAX_DOCUMENT_BYTES = 10 * 1024 * 1024
EXCERPT_CHARS = 2000

_TEXT_EXTENSIONS = (".txt",)
_LAYOUT_EXTENSIONS = (".pdf", ".jpg", ".jpeg", ".png", ".docx")


class DocumentRejected(ValueError):
    """The upload is not an accepted medical document."""


def check_document(filename: str, size: int) -> str:
    """Validate an upload and return its lower-case extension.

    Raises:
        DocumentRejected: Missing name, unsupported type or too large.
    """
    if not filename:
        raise DocumentRejected("No file uploaded")
    extension = PurePath(filename).suffix.lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise DocumentRejected(
            "File type not allowed. Accepted: PDF, JPG, PNG, WEBP, DOC, DOCX, TXT"
        )
    if size > MAX_DOCUMENT_BYTES:
        raise DocumentRejected(
            f"File too large: {size} bytes (limit {MAX_DOCUMENT_BYTES} bytes)"
        )
    return extension


class DocumentAnalyzer:
    """Turns an uploaded report into a localized analysis.

    Attributes:
        engine: Triage engine that writes the analysis.
        client: Azure Document Intelligence client, or None when not
            configured.
    """

    def __init__(self, engine: Optional[TriageEngine] = None) -> None:
        self.engine = engine or TriageEngine()
        self.endpoint: str = os.getenv("DOCUMENT_INTELLIGENCE_ENDPOINT", "")
        self.key: str = os.getenv("DOCUMENT_INTELLIGENCE_KEY", "")
        self.client = None
        self._init_client()

    def _init_client(self) -> None:
        if not self.endpoint or not self.key or self.key == "your-key":
            logger.warning(
                "Document Intelligence credentials not configured. "
                "Only plain text files will be read."
            )
            return
        try:
            from azure.ai.formrecognizer import DocumentAnalysisClient
            from azure.core.credentials import AzureKeyCredential

            self.client = DocumentAnalysisClient(
                endpoint=self.endpoint,
                credential=AzureKeyCredential(self.key),
            )
            logger.info("Document Intelligence client initialized.")
        except Exception as exc:
            logger.error("Failed to init Document Intelligence client: %s", exc)

    def analyze(
        self,
        filename: str,
        data: bytes,
        content_type: str = "",
        language: str = DEFAULT_LOCALE,
    ) -> dict:
        """Validate, read and analyze one upload.

        Returns:
            Dict with ``analysis`` (summary, findings, recommendations,
            aiPowered) and ``file`` (originalName, size, type).

        Raises:
            DocumentRejected: See ``check_document``.
        """
        extension = check_document(filename, len(data))
        text = self.extract_text(filename, data, extension)
        analysis = self.engine.analyze_document(
            filename, content_type, len(data), text, language
        )
        logger.info(
            "Analyzed document '%s' (%d bytes, %d chars of text, ai=%s).",
            filename, len(data), len(text), analysis.get("aiPowered"),
        )
        return {
            "analysis": analysis,
            "file": {"originalName": filename, "size": len(data), "type": content_type},
        }

    def extract_text(self, filename: str, data: bytes, extension: str) -> str:
        """Text of the document, cut to ``EXCERPT_CHARS``; empty if unreadable."""
        if extension in _TEXT_EXTENSIONS:
            return data.decode("utf-8", errors="replace")[:EXCERPT_CHARS]
        if extension in _LAYOUT_EXTENSIONS and self.client is not None:
            return self._extract_with_layout(filename, data)[:EXCERPT_CHARS]
        return ""

    def _extract_with_layout(self, filename: str, data: bytes) -> str:
        try:
            poller = self.client.begin_analyze_document("prebuilt-layout", document=data)
            result = poller.result()
            lines = [line.content for page in result.pages for line in page.lines]
            return "\n".join(lines)
        except Exception as exc:
            logger.error("Error processing %s with Document Intelligence: %s", filename, exc)
            return ""
