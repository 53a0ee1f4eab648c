"""
Speech Handler Module
=====================
Voice input and output for the consultation desk via Azure Speech
Services.

``SpeechAdapter`` is the contract the consultation session talks to:

  - ``speak(text, locale)`` resolves when playback ends, is cancelled or
    fails; it never raises for playback problems
  - ``cancel_speech()`` stops the current utterance immediately
  - ``start_listening(locale, on_interim)`` opens the microphone and
    reports interim transcripts through ``on_interim``
  - ``stop_listening()`` closes the microphone and returns the final
    transcript

``AzureSpeechAdapter`` implements it with the Speech SDK. Without
credentials it reports ``supported = False`` and every call is a no-op,
so typed input keeps working.
"""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Callable, Optional

from dotenv import load_dotenv

from caredesk.locales import LOCALE_EN, LOCALE_HI

load_dotenv()
logger = logging.getLogger(__name__)

# Neural voices used for spoken prompts
VOICE_NAMES: dict[str, str] = {
    LOCALE_EN: "en-US-JennyNeural",
    LOCALE_HI: "hi-IN-SwaraNeural",
}

InterimCallback = Callable[[str], None]


class SpeechAdapter(ABC):
    """Speech-to-text and text-to-speech used by a consultation."""

    @property
    def supported(self) -> bool:
        return False

    @abstractmethod
    async def speak(self, text: str, locale: str) -> None:
        ...

    @abstractmethod
    def cancel_speech(self) -> None:
        ...

    @abstractmethod
    async def start_listening(
        self, locale: str, on_interim: Optional[InterimCallback] = None
    ) -> None:
        ...

    @abstractmethod
    async def stop_listening(self) -> str:
        ...


class AzureSpeechAdapter(SpeechAdapter):
    """Azure Speech implementation of ``SpeechAdapter``.

    Synthesis and recognition calls of the SDK block until the service
    answers, so they run in a worker thread via ``asyncio.to_thread``.
    Recognition uses continuous mode: ``recognizing`` events feed the
    interim transcript and ``recognized`` events accumulate the final
    text returned by ``stop_listening``.

    Attributes:
        speech_key: Azure Speech subscription key.
        speech_region: Azure Speech service region.
        speech_config: Configured SpeechConfig instance.
    """

    def __init__(self) -> None:
        self.speech_key: str = os.getenv("SPEECH_KEY", "")
        self.speech_region: str = os.getenv("SPEECH_REGION", "centralindia")
        self.speech_config = None
        self._synthesizer = None
        self._recognizer = None
        self._final_parts: list[str] = []
        self._initialized = False
        self._init_config()

    def _init_config(self) -> None:
        if not self.speech_key or self.speech_key == "your-key":
            logger.warning(
                "Azure Speech credentials not configured. "
                "Voice input will be unavailable; text input still works."
            )
            return
        try:
            import azure.cognitiveservices.speech as speechsdk

            self.speech_config = speechsdk.SpeechConfig(
                subscription=self.speech_key,
                region=self.speech_region,
            )
            self._initialized = True
            logger.info("Azure Speech config initialized (region=%s).", self.speech_region)
        except ImportError:
            logger.error("azure-cognitiveservices-speech package not installed.")
        except Exception as exc:
            logger.error("Failed to init Speech config: %s", exc)

    @property
    def supported(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # Text-to-speech
    # ------------------------------------------------------------------

    async def speak(self, text: str, locale: str) -> None:
        """Speak ``text`` through the default speaker.

        Returns once playback has completed, was stopped by
        ``cancel_speech`` or failed. Failures are logged, not raised.
        """
        if not self._initialized:
            logger.warning("Speech not initialized; skipping playback.")
            return

        synthesizer = None
        try:
            import azure.cognitiveservices.speech as speechsdk

            self.speech_config.speech_synthesis_language = locale
            voice = VOICE_NAMES.get(locale)
            if voice:
                self.speech_config.speech_synthesis_voice_name = voice

            synthesizer = speechsdk.SpeechSynthesizer(speech_config=self.speech_config)
            self._synthesizer = synthesizer
            result = await asyncio.to_thread(
                lambda: synthesizer.speak_text_async(text).get()
            )

            if result.reason == speechsdk.ResultReason.SynthesizingAudioCompleted:
                logger.info("TTS completed for %d chars (%s).", len(text), locale)
            else:
                logger.warning("TTS ended early: %s", result.reason)
        except Exception as exc:
            logger.error("TTS error: %s", exc)
        finally:
            if synthesizer is not None and self._synthesizer is synthesizer:
                self._synthesizer = None

    def cancel_speech(self) -> None:
        synthesizer = self._synthesizer
        if synthesizer is None:
            return
        try:
            synthesizer.stop_speaking_async()
        except Exception as exc:
            logger.error("Failed to stop TTS: %s", exc)

    # ------------------------------------------------------------------
    # Speech-to-text
    # ------------------------------------------------------------------

    async def start_listening(
        self, locale: str, on_interim: Optional[InterimCallback] = None
    ) -> None:
        """Open the default microphone for continuous recognition."""
        if not self._initialized:
            logger.warning("Speech not initialized; cannot listen.")
            return
        if self._recognizer is not None:
            return

        import azure.cognitiveservices.speech as speechsdk

        self.speech_config.speech_recognition_language = locale
        audio_config = speechsdk.audio.AudioConfig(use_default_microphone=True)
        recognizer = speechsdk.SpeechRecognizer(
            speech_config=self.speech_config,
            audio_config=audio_config,
        )
        self._final_parts = []

        # SDK callbacks fire on an SDK worker thread
        def _recognizing(evt) -> None:
            if on_interim is not None:
                on_interim(" ".join(self._final_parts + [evt.result.text]).strip())

        def _recognized(evt) -> None:
            if evt.result.reason == speechsdk.ResultReason.RecognizedSpeech and evt.result.text:
                self._final_parts.append(evt.result.text)
                if on_interim is not None:
                    on_interim(" ".join(self._final_parts))

        recognizer.recognizing.connect(_recognizing)
        recognizer.recognized.connect(_recognized)

        await asyncio.to_thread(lambda: recognizer.start_continuous_recognition_async().get())
        self._recognizer = recognizer
        logger.info("Listening started (%s).", locale)

    async def stop_listening(self) -> str:
        """Close the microphone and return the final transcript."""
        recognizer = self._recognizer
        if recognizer is None:
            return ""
        self._recognizer = None
        try:
            await asyncio.to_thread(lambda: recognizer.stop_continuous_recognition_async().get())
        except Exception as exc:
            logger.error("Failed to stop recognition: %s", exc)

        transcript = " ".join(self._final_parts).strip()
        self._final_parts = []
        logger.info("Listening stopped, %d chars recognised.", len(transcript))
        return transcript

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    @staticmethod
    def is_available() -> bool:
        """Check whether Azure Speech credentials are configured."""
        key = os.getenv("SPEECH_KEY", "")
        return bool(key and key != "your-key")
