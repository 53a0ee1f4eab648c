"""
Triage Engine Module
====================
Server-side AI gateway. Wraps OpenAI chat completions for the three
consultation calls (severity analysis, report generation, chat) and for
uploaded medical reports. Falls back to deterministic, localized
answers whenever the model is not configured or the call fails.

Every answer carries ``aiPowered`` so the patient UI can flag a basic
(keyword-based) analysis.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Mapping, Optional, Sequence

from dotenv import load_dotenv

from caredesk.locales import DEFAULT_LOCALE, LOCALE_HI, message, normalize_locale
from caredesk.severity import DEFAULT_SEVERITY, fallback_severity, normalize_severity

load_dotenv()
logger = logging.getLogger(__name__)

# Values shipped in .env templates that mean "not configured"
_PLACEHOLDER_KEYS = {"your-openai-api-key-here", "your-key"}

CHAT_HISTORY_LIMIT = 10

_ANALYZE_PROMPTS = {
    DEFAULT_LOCALE: (
        'You are a medical triage AI assistant. Patient symptoms: "{symptoms}". '
        'Medical history: "{history}". Provide severity level (Low/Medium/High/Critical) '
        'and brief recommendations in JSON format: {{"severity": "...", "recommendations": "..."}}'
    ),
    LOCALE_HI: (
        'आप एक मेडिकल ट्राइएज AI हैं। रोगी के लक्षण: "{symptoms}". चिकित्सा इतिहास: "{history}". '
        'कृपया गंभीरता स्तर (Low/Medium/High/Critical) और संक्षिप्त सिफारिशें JSON प्रारूप में दें: '
        '{{"severity": "...", "recommendations": "..."}}'
    ),
}

_REPORT_PROMPTS = {
    DEFAULT_LOCALE: (
        "As a medical triage AI, analyze the following patient data:\n"
        "Name: {name}, Age: {age}\n"
        "Symptoms: {symptoms}\n"
        "Medical History: {history}\n\n"
        "Provide a comprehensive report in JSON format:\n"
        '{{"severity": "Low/Medium/High/Critical", "summary": "Brief summary of assessment", '
        '"possibleConditions": ["Possible condition 1", "Possible condition 2"], '
        '"recommendations": ["Recommendation 1", "Recommendation 2"], '
        '"medications": ["Medication suggestion 1"], "nextSteps": ["Next step 1", "Next step 2"]}}'
    ),
    LOCALE_HI: (
        "एक चिकित्सा ट्राइएज AI के रूप में, निम्नलिखित रोगी डेटा का विश्लेषण करें:\n"
        "नाम: {name}, उम्र: {age}\n"
        "लक्षण: {symptoms}\n"
        "चिकित्सा इतिहास: {history}\n\n"
        "कृपया JSON प्रारूप में एक व्यापक रिपोर्ट दें:\n"
        '{{"severity": "Low/Medium/High/Critical", "summary": "संक्षिप्त सारांश", '
        '"possibleConditions": ["संभावित स्थिति 1", "संभावित स्थिति 2"], '
        '"recommendations": ["सिफारिश 1", "सिफारिश 2"], '
        '"medications": ["दवा सुझाव 1"], "nextSteps": ["अगला कदम 1", "अगला कदम 2"]}}'
    ),
}

_CHAT_SYSTEM_PROMPTS = {
    DEFAULT_LOCALE: (
        "You are a helpful and knowledgeable AI medical assistant. You answer health-related "
        "questions clearly and concisely. You do not diagnose but provide general medical "
        "information and advice. Always recommend consulting a doctor for serious concerns. "
        "You can also help with general wellness, nutrition, exercise, and mental health questions."
    ),
    LOCALE_HI: (
        "आप एक सहायक और ज्ञानपूर्ण AI मेडिकल सहायक हैं। आप स्वास्थ्य संबंधी प्रश्नों का उत्तर हिंदी में "
        "देते हैं। आप निदान नहीं करते बल्कि सामान्य चिकित्सा जानकारी और सलाह देते हैं। हमेशा गंभीर "
        "मामलों में डॉक्टर से मिलने की सलाह दें।"
    ),
}

_DOCUMENT_PROMPTS = {
    DEFAULT_LOCALE: (
        'You are a medical AI assistant. A patient uploaded a medical report "{filename}" '
        "({content_type}, {size_kb:.1f}KB). {content} Provide analysis in JSON: "
        '{{"summary": "report summary", "findings": "key findings", '
        '"recommendations": "recommendations"}}'
    ),
    LOCALE_HI: (
        'आप एक मेडिकल AI सहायक हैं। रोगी ने "{filename}" ({content_type}, {size_kb:.1f}KB) '
        "नामक एक मेडिकल रिपोर्ट अपलोड की है। {content} कृपया JSON प्रारूप में जवाब दें: "
        '{{"summary": "रिपोर्ट का सारांश", "findings": "प्रमुख निष्कर्ष", "recommendations": "सिफारिशें"}}'
    ),
}

_DOCUMENT_CONTENT = {
    DEFAULT_LOCALE: ('File content: "{text}"', "File is an image/PDF."),
    LOCALE_HI: ('फ़ाइल सामग्री: "{text}"', "फ़ाइल एक छवि/PDF है।"),
}

_CHAT_ROLES = {"user", "assistant"}


def _as_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return [str(value)]


class TriageEngine:
    """AI gateway backed by OpenAI chat completions.

    Attributes:
        openai_client: OpenAI client, or None in fallback mode.
        model: Chat model name.
        severity_keywords: Keyword table for the fallback severity rule;
            None uses ``severity.DEFAULT_SEVERITY_KEYWORDS``.
    """

    def __init__(
        self,
        severity_keywords: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> None:
        self.openai_client = None
        self.model: str = os.getenv("OPENAI_MODEL", "gpt-3.5-turbo")
        self.severity_keywords = severity_keywords
        self._initialized = False
        self._init_openai()

    def _init_openai(self) -> None:
        key = os.getenv("OPENAI_API_KEY", "")
        if not key or key in _PLACEHOLDER_KEYS:
            logger.warning(
                "OpenAI API key not configured. "
                "Using keyword-based fallback analysis."
            )
            return

        try:
            from openai import OpenAI

            self.openai_client = OpenAI(api_key=key)
            self._initialized = True
            logger.info("OpenAI client initialized (model=%s).", self.model)
        except ImportError:
            logger.error("openai package not installed.")
        except Exception as exc:
            logger.error("Failed to init OpenAI: %s", exc)

    @property
    def is_configured(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # Gateway operations
    # ------------------------------------------------------------------

    def analyze_severity(
        self,
        symptoms: str,
        history: str = "",
        language: str = DEFAULT_LOCALE,
    ) -> dict:
        """Classify symptom severity.

        Returns:
            Dict with ``severity``, ``recommendations`` and ``aiPowered``.
        """
        language = normalize_locale(language)
        if not self._initialized:
            return self._fallback_analysis(symptoms, language)

        prompt = _ANALYZE_PROMPTS[language].format(symptoms=symptoms, history=history)
        try:
            content = self._complete(
                [{"role": "user", "content": prompt}],
                temperature=0.3,
                max_tokens=300,
                json_mode=True,
                operation="analyze_severity",
            )
        except Exception as exc:
            logger.error("Severity analysis error: %s", exc)
            return self._fallback_analysis(symptoms, language)

        try:
            parsed = json.loads(content)
            if not isinstance(parsed, dict):
                raise ValueError("analysis is not a JSON object")
        except ValueError:
            logger.warning("Severity analysis was not valid JSON; keeping raw text.")
            parsed = {"severity": DEFAULT_SEVERITY, "recommendations": content}

        return {
            "severity": normalize_severity(parsed.get("severity")),
            "recommendations": parsed.get("recommendations") or "",
            "aiPowered": True,
        }

    def generate_report(
        self,
        name: str,
        age: str,
        symptoms: str,
        history: str = "",
        language: str = DEFAULT_LOCALE,
    ) -> dict:
        """Build the full consultation report.

        Returns:
            Dict with ``severity``, ``summary``, ``possibleConditions``,
            ``recommendations``, ``medications``, ``nextSteps`` and
            ``aiPowered``.
        """
        language = normalize_locale(language)
        if not self._initialized:
            return self._fallback_report(name, age, symptoms, history, language)

        prompt = _REPORT_PROMPTS[language].format(
            name=name,
            age=age,
            symptoms=symptoms,
            history=history or message("none_reported", language),
        )
        try:
            content = self._complete(
                [{"role": "user", "content": prompt}],
                temperature=0.3,
                max_tokens=600,
                json_mode=True,
                operation="generate_report",
            )
        except Exception as exc:
            logger.error("Report generation error: %s", exc)
            return self._fallback_report(name, age, symptoms, history, language)

        try:
            parsed = json.loads(content)
            if not isinstance(parsed, dict):
                raise ValueError("report is not a JSON object")
        except ValueError:
            logger.warning("Report was not valid JSON; using raw text as summary.")
            parsed = {"severity": DEFAULT_SEVERITY, "summary": content}

        return {
            "severity": normalize_severity(parsed.get("severity")),
            "summary": str(parsed.get("summary") or ""),
            "possibleConditions": _as_list(parsed.get("possibleConditions")),
            "recommendations": _as_list(parsed.get("recommendations")),
            "medications": _as_list(parsed.get("medications")),
            "nextSteps": _as_list(parsed.get("nextSteps")),
            "aiPowered": True,
        }

    def chat(self, messages: Sequence[Mapping], language: str = DEFAULT_LOCALE) -> dict:
        """Answer a free-form health question.

        Only the last ``CHAT_HISTORY_LIMIT`` user/assistant messages are
        forwarded to the model.

        Returns:
            Dict with ``reply`` and ``aiPowered``.
        """
        language = normalize_locale(language)
        history = [
            {"role": str(m.get("role")), "content": str(m.get("content") or "")}
            for m in messages
            if m.get("role") in _CHAT_ROLES
        ][-CHAT_HISTORY_LIMIT:]

        if not self._initialized:
            return {"reply": message("chat_unconfigured", language), "aiPowered": False}

        try:
            content = self._complete(
                [{"role": "system", "content": _CHAT_SYSTEM_PROMPTS[language]}] + history,
                temperature=0.7,
                max_tokens=500,
                json_mode=False,
                operation="chat",
            )
            return {"reply": content, "aiPowered": True}
        except Exception as exc:
            logger.error("Chat completion error: %s", exc)
            question = next(
                (m["content"] for m in reversed(history) if m["role"] == "user"), ""
            )
            return {
                "reply": message("chat_upstream_error", language, question=question[:50]),
                "aiPowered": False,
            }

    def analyze_document(
        self,
        filename: str,
        content_type: str,
        size: int,
        text: str = "",
        language: str = DEFAULT_LOCALE,
    ) -> dict:
        """Summarize an uploaded medical report.

        Args:
            filename: Original file name.
            content_type: MIME type reported by the upload.
            size: File size in bytes.
            text: Extracted text, empty for images and unreadable files.
            language: Locale of the answer.

        Returns:
            Dict with ``summary``, ``findings``, ``recommendations`` and
            ``aiPowered``.
        """
        language = normalize_locale(language)
        if not self._initialized:
            return self._fallback_document(filename, language)

        with_text, without_text = _DOCUMENT_CONTENT[language]
        prompt = _DOCUMENT_PROMPTS[language].format(
            filename=filename,
            content_type=content_type or "unknown",
            size_kb=size / 1024,
            content=with_text.format(text=text) if text else without_text,
        )
        try:
            content = self._complete(
                [{"role": "user", "content": prompt}],
                temperature=0.3,
                max_tokens=500,
                json_mode=True,
                operation="analyze_document",
            )
        except Exception as exc:
            logger.error("Document analysis error: %s", exc)
            return self._fallback_document(filename, language)

        try:
            parsed = json.loads(content)
            if not isinstance(parsed, dict):
                raise ValueError("analysis is not a JSON object")
        except ValueError:
            logger.warning("Document analysis was not valid JSON; using raw text as summary.")
            parsed = {"summary": content}

        return {
            "summary": str(parsed.get("summary") or ""),
            "findings": str(parsed.get("findings") or ""),
            "recommendations": str(parsed.get("recommendations") or ""),
            "aiPowered": True,
        }

    # ------------------------------------------------------------------
    # OpenAI call
    # ------------------------------------------------------------------

    def _complete(
        self,
        messages: list[dict],
        temperature: float,
        max_tokens: int,
        json_mode: bool,
        operation: str,
    ) -> str:
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = self.openai_client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )

        # Token usage tracking for cost monitoring
        usage = getattr(response, "usage", None)
        if usage:
            logger.info(
                "Token usage [%s]: prompt=%d, completion=%d, total=%d",
                operation,
                usage.prompt_tokens,
                usage.completion_tokens,
                usage.total_tokens,
            )
        return response.choices[0].message.content or ""

    # ------------------------------------------------------------------
    # Fallbacks
    # ------------------------------------------------------------------

    def _fallback_analysis(self, symptoms: str, language: str) -> dict:
        return {
            "severity": fallback_severity(symptoms, self.severity_keywords),
            "recommendations": message("analysis_fallback", language, symptoms=symptoms),
            "aiPowered": False,
        }

    def _fallback_report(
        self, name: str, age: str, symptoms: str, history: str, language: str
    ) -> dict:
        summary = message(
            "report_fallback_summary",
            language,
            name=name or message("unknown", language),
            age=age or message("unknown", language),
            symptoms=symptoms or message("not_specified", language),
            history=history or message("none_reported", language),
        )
        return {
            "severity": fallback_severity(symptoms, self.severity_keywords),
            "summary": summary,
            "possibleConditions": [message("report_fallback_condition", language)],
            "recommendations": [message("report_fallback_recommendation", language)],
            "medications": [message("report_fallback_medication", language)],
            "nextSteps": [
                message("report_fallback_next_specialist", language),
                message("report_fallback_next_labs", language),
            ],
            "aiPowered": False,
        }

    @staticmethod
    def _fallback_document(filename: str, language: str) -> dict:
        return {
            "summary": message("document_fallback_summary", language, filename=filename),
            "findings": message("document_fallback_findings", language),
            "recommendations": message("document_fallback_recommendations", language),
            "aiPowered": False,
        }
