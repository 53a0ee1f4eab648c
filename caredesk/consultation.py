"""
Consultation Module
===================
Runs one patient consultation on top of the intake state machine.

``ConsultationSession`` owns the current ``SessionState``, feeds events
through ``transition`` and executes the effects ``effects_for`` derives:
speaking prompts, opening the microphone, calling the AI gateway and
registering the patient.

Voice rules enforced here:
  - utterances never overlap; a new one cancels the previous one first
  - the microphone never opens while an utterance is playing
  - after a scripted intake prompt the microphone opens at most once,
    and never while a report or chat reply is pending
  - ``reset()`` stops speech and listening immediately; results that
    arrive afterwards are dropped by generation
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Mapping, Optional, Sequence

from caredesk.intake_flow import (
    CancelVoice,
    ChatMessageSent,
    ChatReplyReceived,
    ContinueChat,
    Effect,
    Event,
    LanguageChanged,
    PatientReport,
    ReportReady,
    RequestChatReply,
    RequestReport,
    Reset,
    SessionState,
    Speak,
    Stage,
    Start,
    SubmitAnswer,
    SubmitToRegistry,
    VoiceChanged,
    VoiceState,
    effects_for,
    local_fallback_report,
    transition,
)
from caredesk.locales import DEFAULT_LOCALE, message, normalize_locale
from caredesk.severity import fallback_severity, normalize_severity

logger = logging.getLogger(__name__)

_DIGITS = re.compile(r"\d+")


def parse_age(text: str) -> int:
    """First run of digits in ``text`` as an int, 0 if there is none."""
    match = _DIGITS.search(text or "")
    return int(match.group()) if match else 0


class ConsultationSession:
    """Async driver for a single patient consultation.

    Args:
        gateway: Object with async ``analyze_severity``, ``generate_report``
            and ``chat`` (see ``AIGatewayClient``).
        speech: ``SpeechAdapter``, or None for a text-only session.
        registry: Object with async ``submit_patient(record)``, or None to
            skip registration.
        language: Initial locale.
        severity_keywords: Keyword table for the local fallback report.
    """

    def __init__(
        self,
        gateway,
        speech=None,
        registry=None,
        language: str = DEFAULT_LOCALE,
        severity_keywords: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> None:
        self.gateway = gateway
        self.speech = speech
        self.registry = registry
        self.severity_keywords = severity_keywords
        self.interim_transcript = ""
        self._state = SessionState(language=normalize_locale(language))
        self._speaking: Optional[asyncio.Future] = None
        self._interrupted: Optional[asyncio.Future] = None
        self._listening = False
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def speech_supported(self) -> bool:
        return bool(self.speech is not None and self.speech.supported)

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def notices(self) -> list[str]:
        """Persistent notices for the patient, in the session language."""
        notices = []
        language = self._state.language
        if not self.speech_supported:
            notices.append(message("speech_unsupported", language))
        report = self._state.report
        if report is not None and not report.ai_powered:
            notices.append(message("basic_analysis_notice", language))
        return notices

    # ------------------------------------------------------------------
    # Patient actions
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self._dispatch(Start())

    async def submit_answer(self, text: str) -> None:
        """Answer the current step. Returns once the report is ready,
        leaving patient registration running in the background."""
        await self._dispatch(SubmitAnswer(text))

    async def continue_chat(self) -> None:
        await self._dispatch(ContinueChat())

    async def send_chat_message(self, text: str) -> None:
        await self._dispatch(ChatMessageSent(text))

    async def set_language(self, language: str) -> None:
        await self._dispatch(LanguageChanged(language))

    async def reset(self) -> None:
        await self._dispatch(Reset())

    async def accept_input(self, text: str) -> None:
        """Route typed or transcribed text to the current stage."""
        state = self._state
        if state.stage is Stage.INTAKE:
            await self.submit_answer(text)
        elif state.stage is Stage.CHAT and not state.chat_loading:
            await self.send_chat_message(text)
        else:
            logger.debug("Ignoring input in stage '%s'.", state.stage.value)

    async def listen(self) -> bool:
        """Open the microphone. Returns True if listening afterwards."""
        if not self.speech_supported:
            return False
        if self._listening:
            return True

        state = self._state
        if state.stage not in (Stage.INTAKE, Stage.CHAT) or state.chat_loading:
            return False

        await self._silence()
        # The interrupted prompt may have opened the microphone meanwhile
        if self._listening:
            return True
        if self._state.generation != state.generation:
            return False

        self._listening = True
        self.interim_transcript = ""
        try:
            await self.speech.start_listening(state.language, self._on_interim)
        except Exception as exc:
            self._listening = False
            logger.error("Could not start listening: %s", exc)
            return False

        self._set_voice(VoiceState.LISTENING, state.generation)
        return True

    async def finish_listening(self) -> str:
        """Close the microphone and submit the final transcript."""
        if not self._listening:
            return ""
        self._listening = False
        generation = self._state.generation

        try:
            transcript = await self.speech.stop_listening()
        except Exception as exc:
            logger.error("Could not finalize transcript: %s", exc)
            transcript = ""

        self.interim_transcript = ""
        self._set_voice(VoiceState.IDLE, generation)

        transcript = (transcript or "").strip()
        if transcript and self._state.generation == generation:
            await self.accept_input(transcript)
        return transcript

    async def drain(self) -> None:
        """Wait for background work such as registry submission.

        Call before tearing the event loop down, otherwise pending
        registrations are cancelled with it.
        """
        while True:
            pending = [task for task in self._background if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Event dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, event: Event) -> SessionState:
        previous = self._state
        current = transition(previous, event)
        if current is previous:
            generation = getattr(event, "generation", previous.generation)
            if generation != previous.generation:
                logger.info(
                    "Discarding stale %s (generation %d, current %d).",
                    type(event).__name__, generation, previous.generation,
                )
            return current

        self._state = current
        logger.debug(
            "%s: %s -> %s", type(event).__name__, previous.stage.value, current.stage.value
        )
        for effect in effects_for(previous, current, event):
            await self._run_effect(effect)
        return self._state

    def _set_voice(self, voice_state: VoiceState, generation: int) -> None:
        self._state = transition(self._state, VoiceChanged(voice_state, generation))

    def _on_interim(self, text: str) -> None:
        self.interim_transcript = text

    async def _run_effect(self, effect: Effect) -> None:
        if isinstance(effect, CancelVoice):
            await self._silence()
            self.interim_transcript = ""
        elif isinstance(effect, Speak):
            await self._speak_effect(effect)
        elif isinstance(effect, SubmitToRegistry):
            task = asyncio.create_task(self._submit_to_registry(effect))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        elif isinstance(effect, RequestReport):
            await self._request_report(effect)
        elif isinstance(effect, RequestChatReply):
            await self._request_chat_reply(effect)

    # ------------------------------------------------------------------
    # Voice
    # ------------------------------------------------------------------

    async def _speak_effect(self, effect: Speak) -> None:
        generation = self._state.generation
        step_index = self._state.current_step_index

        if effect.delay:
            await asyncio.sleep(effect.delay)
            if self._state.generation != generation:
                return

        finished = await self._speak(effect.text, generation)

        if effect.listen_after and finished and self._may_auto_listen(generation, step_index):
            await self.listen()

    def _may_auto_listen(self, generation: int, step_index: int) -> bool:
        state = self._state
        return (
            self.speech_supported
            and not self._listening
            and state.generation == generation
            and state.stage is Stage.INTAKE
            and state.current_step_index == step_index
            and state.voice_state is VoiceState.IDLE
        )

    async def _speak(self, text: str, generation: int) -> bool:
        """Play one utterance. Returns False if it was interrupted."""
        if not text:
            return False
        await self._silence()
        if not self.speech_supported or self._state.generation != generation:
            return False

        task = asyncio.ensure_future(self.speech.speak(text, self._state.language))
        self._speaking = task
        self._set_voice(VoiceState.SPEAKING, generation)
        try:
            await task
        except Exception as exc:
            logger.error("Speech output failed: %s", exc)
        finally:
            if self._speaking is task:
                self._speaking = None
                self._set_voice(VoiceState.IDLE, generation)
        return self._interrupted is not task

    async def _silence(self) -> None:
        """Stop the current utterance and close the microphone."""
        task = self._speaking
        if task is not None and not task.done():
            self._interrupted = task
            self.speech.cancel_speech()
            await asyncio.wait({task})

        if self._listening:
            self._listening = False
            try:
                await self.speech.stop_listening()
            except Exception as exc:
                logger.warning("Could not stop listening: %s", exc)
            self._set_voice(VoiceState.IDLE, self._state.generation)

    # ------------------------------------------------------------------
    # Gateway and registry
    # ------------------------------------------------------------------

    async def _request_report(self, effect: RequestReport) -> None:
        draft = effect.draft
        await self._silence()
        self._set_voice(VoiceState.THINKING, effect.generation)
        try:
            data = await self.gateway.generate_report(
                name=draft.get("name", ""),
                age=draft.get("age", ""),
                symptoms=draft.get("symptoms", ""),
                history=draft.get("history", ""),
                language=effect.language,
            )
            report = PatientReport.from_dict(data)
        except Exception as exc:
            logger.error("Report generation failed, using local fallback: %s", exc)
            report = local_fallback_report(draft, effect.language, self.severity_keywords)

        self._set_voice(VoiceState.IDLE, effect.generation)
        await self._dispatch(ReportReady(report, effect.generation))

    async def _request_chat_reply(self, effect: RequestChatReply) -> None:
        await self._silence()
        self._set_voice(VoiceState.THINKING, effect.generation)
        try:
            data = await self.gateway.chat(list(effect.messages), effect.language)
            reply = str(data.get("reply") or "").strip()
        except Exception as exc:
            logger.error("Chat request failed: %s", exc)
            reply = ""

        if not reply:
            reply = message("chat_apology", effect.language)

        self._set_voice(VoiceState.IDLE, effect.generation)
        await self._dispatch(ChatReplyReceived(reply, effect.generation))

    async def _submit_to_registry(self, effect: SubmitToRegistry) -> None:
        if self.registry is None:
            return

        draft = effect.draft
        symptoms = draft.get("symptoms", "")
        history = draft.get("history", "")
        analysis: dict[str, Any] = {}
        try:
            analysis = await self.gateway.analyze_severity(symptoms, history, effect.language)
        except Exception as exc:
            logger.warning("Severity analysis for registration failed: %s", exc)

        severity = normalize_severity(
            analysis.get("severity"),
            default=fallback_severity(symptoms, self.severity_keywords),
        )
        recommendations = analysis.get("recommendations") or ""
        if isinstance(recommendations, (list, tuple)):
            recommendations = "; ".join(str(item) for item in recommendations)

        record = {
            "name": draft.get("name", ""),
            "age": parse_age(draft.get("age", "")),
            "symptoms": symptoms,
            "history": history,
            "severity": severity,
            "languageUsed": effect.language,
            "aiAnalysis": str(recommendations),
        }
        try:
            await self.registry.submit_patient(record)
        except Exception as exc:
            logger.warning("Patient registration failed: %s", exc)
