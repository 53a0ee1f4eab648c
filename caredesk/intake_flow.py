"""
Intake Flow Module
==================
Conversational intake state machine for the AI consultation desk.

A consultation walks through four scripted questions (name, age,
symptoms, history), waits while the report is generated, shows the
report and then opens a free-form chat:

    NotStarted → Intake(0..3) → Generating → Report → Chat
    Reset (from anywhere) → NotStarted

Everything in this module is pure. ``transition`` maps a state and an
event to the next state; ``effects_for`` looks at a completed transition
and lists the side effects (speech, gateway calls, registry submission)
the caller has to run. ``ConsultationSession`` in ``consultation.py``
executes those effects.

Stale results are recognised by the session *generation*: every reset
bumps it, and events carrying an older generation leave the state
untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence, Union

from caredesk.locales import DEFAULT_LOCALE, LOCALE_HI, message, normalize_locale
from caredesk.severity import fallback_severity, normalize_severity

# Only the most recent chat messages are sent to the gateway
CHAT_CONTEXT_LIMIT = 10

# Pause between accepting an answer and asking the next question (seconds)
PROMPT_SETTLE_SECONDS = 0.4

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


class InvalidTransitionError(RuntimeError):
    """Raised when an event is not allowed in the current stage."""


class Stage(str, Enum):
    NOT_STARTED = "not_started"
    INTAKE = "intake"
    GENERATING = "generating"
    REPORT = "report"
    CHAT = "chat"


class Phase(str, Enum):
    """Coarse phase shown to the patient."""

    INTAKE = "intake"
    REPORT = "report"
    CHAT = "chat"


class VoiceState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"


_STAGE_PHASES: dict[Stage, Phase] = {
    Stage.NOT_STARTED: Phase.INTAKE,
    Stage.INTAKE: Phase.INTAKE,
    Stage.GENERATING: Phase.REPORT,
    Stage.REPORT: Phase.REPORT,
    Stage.CHAT: Phase.CHAT,
}


# ---------------------------------------------------------------------------
# Intake script
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IntakeStep:
    """One scripted intake question.

    Attributes:
        key: Draft field the answer is stored under.
        prompt: English (en-US) question.
        prompt_alt: Hindi (hi-IN) question.
        label: English field label for the UI.
        label_alt: Hindi field label for the UI.
    """

    key: str
    prompt: str
    prompt_alt: str
    label: str
    label_alt: str

    def prompt_for(self, locale: Optional[str]) -> str:
        return self.prompt_alt if normalize_locale(locale) == LOCALE_HI else self.prompt

    def label_for(self, locale: Optional[str]) -> str:
        return self.label_alt if normalize_locale(locale) == LOCALE_HI else self.label


INTAKE_STEPS: tuple[IntakeStep, ...] = (
    IntakeStep(
        key="name",
        prompt="Hello! I'm your AI medical assistant. Let's start. What is your name?",
        prompt_alt="नमस्ते! मैं आपकी AI मेडिकल सहायक हूँ। चलिए शुरू करते हैं। आपका नाम क्या है?",
        label="Patient Name",
        label_alt="रोगी का नाम",
    ),
    IntakeStep(
        key="age",
        prompt="Thank you! How old are you?",
        prompt_alt="धन्यवाद! आपकी उम्र क्या है?",
        label="Age",
        label_alt="उम्र",
    ),
    IntakeStep(
        key="symptoms",
        prompt="Can you describe the symptoms you are experiencing?",
        prompt_alt="कृपया बताएं कि आपको क्या लक्षण हो रहे हैं?",
        label="Symptoms",
        label_alt="लक्षण",
    ),
    IntakeStep(
        key="history",
        prompt="Do you have any relevant medical history or ongoing conditions?",
        prompt_alt="क्या आपकी कोई पुरानी बीमारी या चिकित्सा इतिहास है?",
        label="Medical History",
        label_alt="चिकित्सा इतिहास",
    ),
)


# ---------------------------------------------------------------------------
# Session data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


def _as_tuple(value: Any) -> tuple[str, ...]:
    """Coerce a list-ish report field into a tuple of strings."""
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    if isinstance(value, (list, tuple)):
        return tuple(str(item) for item in value if str(item).strip())
    return (str(value),)


@dataclass(frozen=True)
class PatientReport:
    """Structured consultation report.

    ``ai_powered`` is False whenever the report came from the keyword
    fallback instead of the language model.
    """

    severity: str
    summary: str = ""
    possible_conditions: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()
    medications: tuple[str, ...] = ()
    next_steps: tuple[str, ...] = ()
    ai_powered: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PatientReport":
        """Build a report from the gateway's camelCase payload."""
        return cls(
            severity=normalize_severity(data.get("severity")),
            summary=str(data.get("summary") or ""),
            possible_conditions=_as_tuple(data.get("possibleConditions")),
            recommendations=_as_tuple(data.get("recommendations")),
            medications=_as_tuple(data.get("medications")),
            next_steps=_as_tuple(data.get("nextSteps")),
            ai_powered=bool(data.get("aiPowered", False)),
        )

    def to_dict(self) -> dict:
        return {
            "severity": self.severity,
            "summary": self.summary,
            "possibleConditions": list(self.possible_conditions),
            "recommendations": list(self.recommendations),
            "medications": list(self.medications),
            "nextSteps": list(self.next_steps),
            "aiPowered": self.ai_powered,
        }


def local_fallback_report(
    draft: Mapping[str, str],
    language: Optional[str] = None,
    severity_keywords: Optional[Mapping[str, Sequence[str]]] = None,
) -> PatientReport:
    """Report built on the device when the gateway cannot be reached."""
    symptoms = draft.get("symptoms", "")
    return PatientReport(
        severity=fallback_severity(symptoms, severity_keywords),
        summary=message(
            "local_report_summary",
            language,
            name=draft.get("name", ""),
            age=draft.get("age", ""),
            symptoms=symptoms,
        ),
        recommendations=(message("local_report_recommendation", language),),
        next_steps=(message("local_report_next_step", language),),
        ai_powered=False,
    )


def _empty_draft() -> Mapping[str, str]:
    return MappingProxyType({})


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of one consultation.

    Attributes:
        stage: Position in the consultation.
        current_step_index: Index into ``INTAKE_STEPS``; -1 before the
            first question, ``len(INTAKE_STEPS)`` once intake is complete.
        voice_state: What the voice channel is doing right now.
        language: Locale for prompts and fallback text.
        draft: Answers captured so far, keyed by step key.
        report: Set exactly once when generation finishes.
        chat_history: Append-only chat transcript.
        chat_loading: True while a chat reply is pending.
        generation: Bumped on every reset.
    """

    stage: Stage = Stage.NOT_STARTED
    current_step_index: int = -1
    voice_state: VoiceState = VoiceState.IDLE
    language: str = DEFAULT_LOCALE
    draft: Mapping[str, str] = field(default_factory=_empty_draft)
    report: Optional[PatientReport] = None
    chat_history: tuple[ChatMessage, ...] = ()
    chat_loading: bool = False
    generation: int = 0

    @property
    def phase(self) -> Phase:
        return _STAGE_PHASES[self.stage]

    @property
    def current_step(self) -> Optional[IntakeStep]:
        if self.stage is Stage.INTAKE and 0 <= self.current_step_index < len(INTAKE_STEPS):
            return INTAKE_STEPS[self.current_step_index]
        return None

    def chat_context(self, limit: int = CHAT_CONTEXT_LIMIT) -> tuple[dict, ...]:
        """The last ``limit`` chat messages as gateway payload dicts."""
        if limit <= 0:
            return ()
        return tuple(msg.to_dict() for msg in self.chat_history[-limit:])


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Start:
    pass


@dataclass(frozen=True)
class SubmitAnswer:
    text: str


@dataclass(frozen=True)
class ReportReady:
    report: PatientReport
    generation: int


@dataclass(frozen=True)
class ContinueChat:
    pass


@dataclass(frozen=True)
class ChatMessageSent:
    text: str


@dataclass(frozen=True)
class ChatReplyReceived:
    content: str
    generation: int


@dataclass(frozen=True)
class VoiceChanged:
    voice_state: VoiceState
    generation: int


@dataclass(frozen=True)
class LanguageChanged:
    language: str


@dataclass(frozen=True)
class Reset:
    pass


Event = Union[
    Start,
    SubmitAnswer,
    ReportReady,
    ContinueChat,
    ChatMessageSent,
    ChatReplyReceived,
    VoiceChanged,
    LanguageChanged,
    Reset,
]


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Speak:
    """Say ``text``; optionally open the microphone once playback ends."""

    text: str
    listen_after: bool = False
    delay: float = 0.0


@dataclass(frozen=True)
class CancelVoice:
    pass


@dataclass(frozen=True)
class RequestReport:
    draft: Mapping[str, str]
    language: str
    generation: int


@dataclass(frozen=True)
class SubmitToRegistry:
    draft: Mapping[str, str]
    language: str
    generation: int


@dataclass(frozen=True)
class RequestChatReply:
    messages: tuple[dict, ...]
    language: str
    generation: int


Effect = Union[Speak, CancelVoice, RequestReport, SubmitToRegistry, RequestChatReply]


# ---------------------------------------------------------------------------
# Transition function
# ---------------------------------------------------------------------------


def _require(state: SessionState, event: object, *stages: Stage) -> None:
    if state.stage not in stages:
        raise InvalidTransitionError(
            f"{type(event).__name__} is not allowed in stage '{state.stage.value}'"
        )


def transition(state: SessionState, event: Event) -> SessionState:
    """Return the state that follows ``event``.

    Events that change nothing (blank answers, stale results, a repeated
    voice state) return ``state`` itself, so callers can detect a no-op
    with an identity check.

    Raises:
        InvalidTransitionError: The event is not allowed in the current stage.
        TypeError: ``event`` is not a known event type.
    """
    if isinstance(event, Reset):
        return SessionState(language=state.language, generation=state.generation + 1)

    if isinstance(event, LanguageChanged):
        language = normalize_locale(event.language)
        if language == state.language:
            return state
        return replace(state, language=language, voice_state=VoiceState.IDLE)

    if isinstance(event, VoiceChanged):
        if event.generation != state.generation or event.voice_state == state.voice_state:
            return state
        return replace(state, voice_state=event.voice_state)

    if isinstance(event, Start):
        _require(state, event, Stage.NOT_STARTED)
        return replace(state, stage=Stage.INTAKE, current_step_index=0)

    if isinstance(event, SubmitAnswer):
        _require(state, event, Stage.INTAKE)
        text = (event.text or "").strip()
        if not text:
            return state
        step = INTAKE_STEPS[state.current_step_index]
        draft = MappingProxyType({**state.draft, step.key: text})
        next_index = state.current_step_index + 1
        if next_index < len(INTAKE_STEPS):
            return replace(state, draft=draft, current_step_index=next_index)
        return replace(
            state,
            draft=draft,
            current_step_index=next_index,
            stage=Stage.GENERATING,
        )

    if isinstance(event, ReportReady):
        if event.generation != state.generation:
            return state
        _require(state, event, Stage.GENERATING)
        return replace(state, stage=Stage.REPORT, report=event.report)

    if isinstance(event, ContinueChat):
        _require(state, event, Stage.REPORT)
        greeting = ChatMessage(ROLE_ASSISTANT, message("chat_greeting", state.language))
        return replace(state, stage=Stage.CHAT, chat_history=(greeting,))

    if isinstance(event, ChatMessageSent):
        _require(state, event, Stage.CHAT)
        if state.chat_loading:
            raise InvalidTransitionError("A chat reply is still pending")
        text = (event.text or "").strip()
        if not text:
            return state
        return replace(
            state,
            chat_history=state.chat_history + (ChatMessage(ROLE_USER, text),),
            chat_loading=True,
        )

    if isinstance(event, ChatReplyReceived):
        if event.generation != state.generation:
            return state
        _require(state, event, Stage.CHAT)
        if not state.chat_loading:
            raise InvalidTransitionError("No chat reply is pending")
        return replace(
            state,
            chat_history=state.chat_history + (ChatMessage(ROLE_ASSISTANT, event.content),),
            chat_loading=False,
        )

    raise TypeError(f"Unknown event: {event!r}")


def effects_for(previous: SessionState, current: SessionState, event: Event) -> list[Effect]:
    """List the side effects of the transition ``previous`` → ``current``."""
    if current is previous:
        return []

    if isinstance(event, (Reset, LanguageChanged)):
        return [CancelVoice()]

    if isinstance(event, Start):
        return [Speak(INTAKE_STEPS[0].prompt_for(current.language), listen_after=True)]

    if isinstance(event, SubmitAnswer):
        if current.stage is Stage.INTAKE:
            step = INTAKE_STEPS[current.current_step_index]
            return [
                Speak(
                    step.prompt_for(current.language),
                    listen_after=True,
                    delay=PROMPT_SETTLE_SECONDS,
                )
            ]
        # Registry submission first so it runs alongside report generation
        return [
            SubmitToRegistry(current.draft, current.language, current.generation),
            RequestReport(current.draft, current.language, current.generation),
        ]

    if isinstance(event, ReportReady):
        return [Speak(message("report_ready", current.language, severity=event.report.severity))]

    if isinstance(event, ContinueChat):
        return [Speak(current.chat_history[-1].content)]

    if isinstance(event, ChatMessageSent):
        return [
            RequestChatReply(current.chat_context(), current.language, current.generation)
        ]

    if isinstance(event, ChatReplyReceived):
        return [Speak(event.content)]

    return []
