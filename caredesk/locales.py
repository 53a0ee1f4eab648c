"""
Locales Module
==============
Supported locales and every user-facing string of the consultation flow.

Each message exists in exactly two variants: English (``en-US``) and
Hindi (``hi-IN``). Switching the locale swaps both the spoken prompts and
any written fallback text.
"""

from __future__ import annotations

LOCALE_EN = "en-US"
LOCALE_HI = "hi-IN"

SUPPORTED_LOCALES: tuple[str, ...] = (LOCALE_EN, LOCALE_HI)
DEFAULT_LOCALE = LOCALE_EN

LANGUAGE_NAMES: dict[str, str] = {
    LOCALE_EN: "English",
    LOCALE_HI: "हिंदी",
}

MESSAGES: dict[str, dict[str, str]] = {
    # ── Consultation flow ─────────────────────────────────────────────
    "report_ready": {
        LOCALE_EN: "Your report is ready. Severity level: {severity}. Please review the full report below.",
        LOCALE_HI: "आपकी रिपोर्ट तैयार है। गंभीरता स्तर: {severity}। कृपया नीचे पूरी रिपोर्ट देखें।",
    },
    "chat_greeting": {
        LOCALE_EN: "You can now ask me any health-related questions. I'm here to help!",
        LOCALE_HI: "अब आप मुझसे कोई भी स्वास्थ्य संबंधी प्रश्न पूछ सकते हैं। मैं आपकी मदद के लिए यहाँ हूँ!",
    },
    "chat_apology": {
        LOCALE_EN: "Sorry, something went wrong.",
        LOCALE_HI: "क्षमा करें, कुछ गलत हो गया।",
    },
    "basic_analysis_notice": {
        LOCALE_EN: "AI service unavailable: this is a basic analysis. Please consult a doctor.",
        LOCALE_HI: "AI सेवा उपलब्ध नहीं है: यह एक बुनियादी विश्लेषण है। कृपया डॉक्टर से परामर्श लें।",
    },
    "speech_unsupported": {
        LOCALE_EN: "Voice input is not available on this device. You can type your answers instead.",
        LOCALE_HI: "इस डिवाइस पर आवाज़ इनपुट उपलब्ध नहीं है। आप अपने उत्तर टाइप कर सकते हैं।",
    },
    # ── Client-side fallback report ───────────────────────────────────
    "local_report_summary": {
        LOCALE_EN: "Patient {name}, age {age}. Symptoms: {symptoms}",
        LOCALE_HI: "रोगी {name}, उम्र {age}। लक्षण: {symptoms}",
    },
    "local_report_recommendation": {
        LOCALE_EN: "Please consult a healthcare professional",
        LOCALE_HI: "कृपया किसी स्वास्थ्य विशेषज्ञ से परामर्श लें",
    },
    "local_report_next_step": {
        LOCALE_EN: "Visit a doctor for proper diagnosis",
        LOCALE_HI: "उचित निदान के लिए डॉक्टर से मिलें",
    },
    # ── Server-side gateway fallbacks ─────────────────────────────────
    "analysis_fallback": {
        LOCALE_EN: "Based on symptoms: {symptoms}. Please consult a doctor for proper diagnosis.",
        LOCALE_HI: "लक्षणों के आधार पर: {symptoms}। उचित निदान के लिए कृपया डॉक्टर से परामर्श लें।",
    },
    "report_fallback_summary": {
        LOCALE_EN: "Patient {name}, age {age}. Symptoms: {symptoms}. History: {history}.",
        LOCALE_HI: "रोगी {name}, उम्र {age}। लक्षण: {symptoms}। इतिहास: {history}।",
    },
    "report_fallback_condition": {
        LOCALE_EN: "Please consult a doctor for proper diagnosis",
        LOCALE_HI: "उचित निदान के लिए कृपया डॉक्टर से परामर्श लें",
    },
    "report_fallback_recommendation": {
        LOCALE_EN: "Visit a healthcare professional for a thorough examination",
        LOCALE_HI: "पूरी जाँच के लिए किसी स्वास्थ्य विशेषज्ञ से मिलें",
    },
    "report_fallback_medication": {
        LOCALE_EN: "No medications can be suggested without a proper diagnosis",
        LOCALE_HI: "उचित निदान के बिना कोई दवा सुझाई नहीं जा सकती",
    },
    "report_fallback_next_specialist": {
        LOCALE_EN: "Schedule an appointment with a specialist",
        LOCALE_HI: "किसी विशेषज्ञ से अपॉइंटमेंट लें",
    },
    "report_fallback_next_labs": {
        LOCALE_EN: "Get lab tests if recommended by a doctor",
        LOCALE_HI: "डॉक्टर की सलाह पर लैब टेस्ट करवाएँ",
    },
    "none_reported": {
        LOCALE_EN: "None reported",
        LOCALE_HI: "कोई नहीं",
    },
    "unknown": {
        LOCALE_EN: "Unknown",
        LOCALE_HI: "अज्ञात",
    },
    "not_specified": {
        LOCALE_EN: "Not specified",
        LOCALE_HI: "निर्दिष्ट नहीं",
    },
    "chat_unconfigured": {
        LOCALE_EN: "I am an AI medical assistant. Please ask your question. (AI key not configured, this is a fallback response.)",
        LOCALE_HI: "मैं एक AI मेडिकल सहायक हूँ। कृपया अपना प्रश्न पूछें। (AI कुंजी कॉन्फ़िगर नहीं है, यह एक फ़ॉलबैक प्रतिक्रिया है।)",
    },
    "chat_upstream_error": {
        LOCALE_EN: 'Regarding your question "{question}": I recommend consulting a healthcare professional for personalized advice. The AI service is temporarily unavailable.',
        LOCALE_HI: 'आपके प्रश्न "{question}" के लिए: कृपया इस विषय पर डॉक्टर से परामर्श लें। AI सेवा अस्थायी रूप से अनुपलब्ध है।',
    },
    # ── Document analysis ─────────────────────────────────────────────
    "document_fallback_summary": {
        LOCALE_EN: 'Document "{filename}" uploaded successfully. Configure OpenAI API key for AI analysis. Please have a doctor review the report.',
        LOCALE_HI: 'दस्तावेज़ "{filename}" सफलतापूर्वक अपलोड किया गया। AI विश्लेषण के लिए OpenAI API कुंजी कॉन्फ़िगर करें। कृपया डॉक्टर से रिपोर्ट की समीक्षा करवाएं।',
    },
    "document_fallback_findings": {
        LOCALE_EN: "AI analysis unavailable (API key not configured). A doctor will review the report.",
        LOCALE_HI: "AI विश्लेषण उपलब्ध नहीं (API कुंजी कॉन्फ़िगर नहीं है)। डॉक्टर रिपोर्ट की समीक्षा करेंगे।",
    },
    "document_fallback_recommendations": {
        LOCALE_EN: "Please visit your nearest hospital and show this report to a doctor.",
        LOCALE_HI: "कृपया अपने नजदीकी अस्पताल में डॉक्टर से मिलें और यह रिपोर्ट दिखाएं।",
    },
}


def normalize_locale(locale: str | None) -> str:
    """Return ``locale`` if supported, otherwise the default locale."""
    if locale in SUPPORTED_LOCALES:
        return locale
    return DEFAULT_LOCALE


def message(key: str, locale: str | None = None, **values: object) -> str:
    """Look up a localized message and fill in its placeholders.

    Args:
        key: Message key in ``MESSAGES``.
        locale: ``en-US`` or ``hi-IN``. Unknown locales fall back to English.
        **values: Placeholder values for ``str.format``.

    Returns:
        The formatted message.

    Raises:
        KeyError: If ``key`` is not a known message.
    """
    variants = MESSAGES[key]
    template = variants[normalize_locale(locale)]
    return template.format(**values) if values else template
