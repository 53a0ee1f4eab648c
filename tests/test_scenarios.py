"""
Test Scenarios
==============
Automated test scenarios for the consultation desk. Covers the intake
state machine, the keyword severity rule, the triage engine (fallback
and model modes), the patient registry, the hospital directory, the
ambulance fleet and uploaded document analysis.

Run with: python -m pytest tests/test_scenarios.py -v
Or:       python tests/test_scenarios.py
"""

from __future__ import annotations

import json
import os
import shutil
import sys
import tempfile
import unittest
from dataclasses import replace
from pathlib import Path
from types import SimpleNamespace
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from caredesk.ambulance_fleet import (
    AMBULANCE_STATUSES,
    SEED_AMBULANCES,
    STATUS_AVAILABLE,
    STATUS_BUSY,
    AmbulanceFleet,
)
from caredesk.document_analyzer import (
    MAX_DOCUMENT_BYTES,
    DocumentAnalyzer,
    DocumentRejected,
    check_document,
)
from caredesk.hospital_directory import (
    BedEditBuffer,
    HospitalDirectory,
    SEED_HOSPITALS,
    haversine_distance,
)
from caredesk.intake_flow import (
    CHAT_CONTEXT_LIMIT,
    INTAKE_STEPS,
    CancelVoice,
    ChatMessage,
    ChatMessageSent,
    ChatReplyReceived,
    ContinueChat,
    InvalidTransitionError,
    LanguageChanged,
    PatientReport,
    Phase,
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
from caredesk.locales import LOCALE_EN, LOCALE_HI, message
from caredesk.patient_registry import PatientRegistry
from caredesk.severity import (
    SEVERITY_CRITICAL,
    SEVERITY_HIGH,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    fallback_severity,
    normalize_severity,
)
from caredesk.triage_engine import TriageEngine

INTAKE_ANSWERS = ["Arjun", "34", "fever and cough", "none"]


def apply(state: SessionState, event):
    """Run one transition and return (new_state, effects)."""
    new_state = transition(state, event)
    return new_state, effects_for(state, new_state, event)


def state_after_intake(language: str = LOCALE_EN) -> SessionState:
    state = transition(SessionState(language=language), Start())
    for answer in INTAKE_ANSWERS:
        state = transition(state, SubmitAnswer(answer))
    return state


def state_in_chat() -> SessionState:
    state = state_after_intake()
    state = transition(state, ReportReady(PatientReport(severity=SEVERITY_LOW), state.generation))
    return transition(state, ContinueChat())


class TestSeverityRule(unittest.TestCase):
    """Keyword fallback used when the language model is unavailable."""

    def test_fever_and_cough_is_medium(self):
        self.assertEqual(fallback_severity("fever and cough"), SEVERITY_MEDIUM)

    def test_most_severe_level_wins(self):
        """'high fever' contains 'fever' but must classify as High."""
        self.assertEqual(fallback_severity("High fever since morning"), SEVERITY_HIGH)
        self.assertEqual(
            fallback_severity("fever with chest pain"), SEVERITY_CRITICAL
        )

    def test_no_keyword_is_low(self):
        self.assertEqual(fallback_severity("slight itch on my arm"), SEVERITY_LOW)
        self.assertEqual(fallback_severity(""), SEVERITY_LOW)
        self.assertEqual(fallback_severity(None), SEVERITY_LOW)

    def test_hindi_keywords(self):
        self.assertEqual(fallback_severity("मुझे बुखार है"), SEVERITY_MEDIUM)
        self.assertEqual(fallback_severity("सीने में दर्द"), SEVERITY_CRITICAL)

    def test_custom_keyword_table(self):
        """An injected table replaces the defaults entirely."""
        table = {SEVERITY_HIGH: ["cough"]}
        self.assertEqual(fallback_severity("fever and cough", table), SEVERITY_HIGH)
        self.assertEqual(fallback_severity("fever", table), SEVERITY_LOW)

    def test_normalize_severity(self):
        self.assertEqual(normalize_severity("critical"), SEVERITY_CRITICAL)
        self.assertEqual(normalize_severity(" High "), SEVERITY_HIGH)
        self.assertEqual(normalize_severity("Extreme"), SEVERITY_MEDIUM)
        self.assertEqual(normalize_severity(None), SEVERITY_MEDIUM)


class TestIntakeTransitions(unittest.TestCase):
    """Pure state machine transitions."""

    def test_initial_state(self):
        state = SessionState()
        self.assertEqual(state.stage, Stage.NOT_STARTED)
        self.assertEqual(state.phase, Phase.INTAKE)
        self.assertEqual(state.current_step_index, -1)
        self.assertEqual(state.voice_state, VoiceState.IDLE)
        self.assertIsNone(state.report)

    def test_start_speaks_first_prompt(self):
        state, effects = apply(SessionState(), Start())
        self.assertEqual(state.stage, Stage.INTAKE)
        self.assertEqual(state.current_step_index, 0)
        self.assertEqual(effects, [Speak(INTAKE_STEPS[0].prompt, listen_after=True)])

    def test_start_twice_is_rejected(self):
        state = transition(SessionState(), Start())
        with self.assertRaises(InvalidTransitionError):
            transition(state, Start())

    def test_answer_advances_and_speaks_next_prompt(self):
        state = transition(SessionState(), Start())
        state, effects = apply(state, SubmitAnswer("  Arjun "))
        self.assertEqual(state.current_step_index, 1)
        self.assertEqual(dict(state.draft), {"name": "Arjun"})
        self.assertEqual(len(effects), 1)
        self.assertEqual(effects[0].text, INTAKE_STEPS[1].prompt)
        self.assertTrue(effects[0].listen_after)
        self.assertGreater(effects[0].delay, 0)

    def test_blank_answer_is_a_no_op(self):
        """Blank input leaves the state untouched and triggers nothing."""
        state = transition(SessionState(), Start())
        for blank in ("", "   ", "\n\t"):
            new_state, effects = apply(state, SubmitAnswer(blank))
            self.assertIs(new_state, state)
            self.assertEqual(effects, [])

    def test_answer_before_start_is_rejected(self):
        with self.assertRaises(InvalidTransitionError):
            transition(SessionState(), SubmitAnswer("Arjun"))

    def test_last_answer_requests_report_and_registration(self):
        state = transition(SessionState(), Start())
        for answer in INTAKE_ANSWERS[:-1]:
            state = transition(state, SubmitAnswer(answer))
        state, effects = apply(state, SubmitAnswer("none"))

        self.assertEqual(state.stage, Stage.GENERATING)
        self.assertEqual(state.phase, Phase.REPORT)
        self.assertEqual(
            dict(state.draft),
            {"name": "Arjun", "age": "34", "symptoms": "fever and cough", "history": "none"},
        )
        self.assertEqual([type(e) for e in effects], [SubmitToRegistry, RequestReport])
        self.assertEqual(effects[1].generation, state.generation)

    def test_report_ready_is_applied_once(self):
        state = state_after_intake()
        report = PatientReport(severity=SEVERITY_HIGH, ai_powered=True)
        state, effects = apply(state, ReportReady(report, state.generation))
        self.assertEqual(state.stage, Stage.REPORT)
        self.assertIs(state.report, report)
        self.assertEqual(len(effects), 1)
        self.assertIn(SEVERITY_HIGH, effects[0].text)
        self.assertFalse(effects[0].listen_after)

        with self.assertRaises(InvalidTransitionError):
            transition(state, ReportReady(report, state.generation))

    def test_stale_report_is_ignored(self):
        state = state_after_intake()
        stale = ReportReady(PatientReport(severity=SEVERITY_LOW), state.generation - 1)
        new_state, effects = apply(state, stale)
        self.assertIs(new_state, state)
        self.assertEqual(effects, [])

    def test_continue_chat_seeds_greeting(self):
        state = state_in_chat()
        self.assertEqual(state.stage, Stage.CHAT)
        self.assertEqual(state.phase, Phase.CHAT)
        self.assertEqual(
            state.chat_history,
            (ChatMessage("assistant", message("chat_greeting", LOCALE_EN)),),
        )

    def test_continue_chat_only_from_report(self):
        with self.assertRaises(InvalidTransitionError):
            transition(state_after_intake(), ContinueChat())

    def test_chat_message_requests_reply(self):
        state, effects = apply(state_in_chat(), ChatMessageSent("Is paracetamol safe?"))
        self.assertTrue(state.chat_loading)
        self.assertEqual(state.chat_history[-1], ChatMessage("user", "Is paracetamol safe?"))
        self.assertEqual(len(effects), 1)
        self.assertIsInstance(effects[0], RequestChatReply)
        self.assertEqual(effects[0].messages[-1]["content"], "Is paracetamol safe?")

    def test_chat_message_while_loading_is_rejected(self):
        state = transition(state_in_chat(), ChatMessageSent("first"))
        with self.assertRaises(InvalidTransitionError):
            transition(state, ChatMessageSent("second"))

    def test_chat_message_during_intake_is_rejected(self):
        state = transition(SessionState(), Start())
        with self.assertRaises(InvalidTransitionError):
            transition(state, ChatMessageSent("hello"))

    def test_chat_reply_appends_and_speaks(self):
        state = transition(state_in_chat(), ChatMessageSent("hi"))
        state, effects = apply(state, ChatReplyReceived("Hello!", state.generation))
        self.assertFalse(state.chat_loading)
        self.assertEqual(state.chat_history[-1], ChatMessage("assistant", "Hello!"))
        self.assertEqual(effects, [Speak("Hello!")])

    def test_chat_context_is_limited(self):
        """Only the most recent messages are forwarded to the gateway."""
        state = state_in_chat()
        history = tuple(ChatMessage("user", f"m{i}") for i in range(15))
        state = replace(state, chat_history=history)
        state, effects = apply(state, ChatMessageSent("latest"))
        messages = effects[0].messages
        self.assertEqual(len(messages), CHAT_CONTEXT_LIMIT)
        self.assertEqual(messages[-1]["content"], "latest")
        self.assertEqual(messages[0]["content"], "m6")

    def test_reset_clears_everything_and_bumps_generation(self):
        state = transition(state_in_chat(), ChatMessageSent("hi"))
        state = replace(state, language=LOCALE_HI)
        new_state, effects = apply(state, Reset())

        self.assertEqual(new_state.stage, Stage.NOT_STARTED)
        self.assertEqual(new_state.phase, Phase.INTAKE)
        self.assertEqual(new_state.current_step_index, -1)
        self.assertEqual(dict(new_state.draft), {})
        self.assertIsNone(new_state.report)
        self.assertEqual(new_state.chat_history, ())
        self.assertFalse(new_state.chat_loading)
        self.assertEqual(new_state.generation, state.generation + 1)
        self.assertEqual(new_state.language, LOCALE_HI)
        self.assertEqual(effects, [CancelVoice()])

    def test_voice_changes(self):
        state = SessionState()
        speaking = transition(state, VoiceChanged(VoiceState.SPEAKING, state.generation))
        self.assertEqual(speaking.voice_state, VoiceState.SPEAKING)
        self.assertIs(
            transition(speaking, VoiceChanged(VoiceState.SPEAKING, state.generation)),
            speaking,
        )
        self.assertIs(
            transition(state, VoiceChanged(VoiceState.SPEAKING, state.generation + 1)),
            state,
        )

    def test_language_change_switches_prompts(self):
        state, effects = apply(SessionState(), LanguageChanged(LOCALE_HI))
        self.assertEqual(state.language, LOCALE_HI)
        self.assertEqual(effects, [CancelVoice()])
        state, effects = apply(state, Start())
        self.assertEqual(effects[0].text, INTAKE_STEPS[0].prompt_alt)

    def test_unsupported_language_falls_back_to_english(self):
        state = SessionState(language=LOCALE_HI)
        state = transition(state, LanguageChanged("fr-FR"))
        self.assertEqual(state.language, LOCALE_EN)

    def test_same_language_is_a_no_op(self):
        state = SessionState(stage=Stage.INTAKE, current_step_index=1,
                             voice_state=VoiceState.SPEAKING)
        new_state, effects = apply(state, LanguageChanged(LOCALE_EN))
        self.assertIs(new_state, state)
        self.assertEqual(effects, [])

    def test_unknown_event_type(self):
        with self.assertRaises(TypeError):
            transition(SessionState(), object())


class TestPatientReport(unittest.TestCase):

    def test_from_gateway_payload(self):
        report = PatientReport.from_dict(
            {
                "severity": "high",
                "summary": "Likely viral infection.",
                "possibleConditions": ["Influenza", "Common cold"],
                "recommendations": "Rest and fluids",
                "nextSteps": None,
                "aiPowered": True,
            }
        )
        self.assertEqual(report.severity, SEVERITY_HIGH)
        self.assertEqual(report.possible_conditions, ("Influenza", "Common cold"))
        self.assertEqual(report.recommendations, ("Rest and fluids",))
        self.assertEqual(report.next_steps, ())
        self.assertTrue(report.ai_powered)
        self.assertEqual(report.to_dict()["possibleConditions"], ["Influenza", "Common cold"])

    def test_local_fallback_report(self):
        draft = dict(zip(("name", "age", "symptoms", "history"), INTAKE_ANSWERS))
        report = local_fallback_report(draft, LOCALE_HI)
        self.assertEqual(report.severity, SEVERITY_MEDIUM)
        self.assertFalse(report.ai_powered)
        self.assertIn("Arjun", report.summary)
        self.assertIn("रोगी", report.summary)


class TestTriageEngineFallback(unittest.TestCase):
    """Gateway answers without an OpenAI key."""

    @classmethod
    def setUpClass(cls):
        with mock.patch.dict(os.environ, {"OPENAI_API_KEY": ""}):
            cls.engine = TriageEngine()

    def test_engine_not_configured(self):
        self.assertFalse(self.engine.is_configured)

    def test_placeholder_key_means_unconfigured(self):
        with mock.patch.dict(os.environ, {"OPENAI_API_KEY": "your-openai-api-key-here"}):
            self.assertFalse(TriageEngine().is_configured)

    def test_analyze_severity(self):
        analysis = self.engine.analyze_severity("sudden chest pain", "", LOCALE_EN)
        self.assertEqual(analysis["severity"], SEVERITY_CRITICAL)
        self.assertFalse(analysis["aiPowered"])
        self.assertIn("sudden chest pain", analysis["recommendations"])

    def test_generate_report(self):
        report = self.engine.generate_report("Arjun", "34", "fever and cough", "", LOCALE_EN)
        self.assertEqual(report["severity"], SEVERITY_MEDIUM)
        self.assertFalse(report["aiPowered"])
        self.assertIn("History: None reported", report["summary"])
        self.assertEqual(len(report["nextSteps"]), 2)
        for key in ("possibleConditions", "recommendations", "medications"):
            self.assertEqual(len(report[key]), 1)

    def test_generate_report_hindi(self):
        report = self.engine.generate_report("अर्जुन", "34", "बुखार", "", LOCALE_HI)
        self.assertEqual(report["severity"], SEVERITY_MEDIUM)
        self.assertIn("रोगी अर्जुन", report["summary"])

    def test_chat_unconfigured(self):
        result = self.engine.chat([{"role": "user", "content": "hello"}], LOCALE_EN)
        self.assertEqual(result["reply"], message("chat_unconfigured", LOCALE_EN))
        self.assertFalse(result["aiPowered"])

    def test_injected_keywords(self):
        with mock.patch.dict(os.environ, {"OPENAI_API_KEY": ""}):
            engine = TriageEngine(severity_keywords={SEVERITY_CRITICAL: ["cough"]})
        self.assertEqual(
            engine.analyze_severity("fever and cough")["severity"], SEVERITY_CRITICAL
        )


def _completion(content: str) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
    )


class TestTriageEngineModel(unittest.TestCase):
    """Gateway answers with a (stubbed) OpenAI client."""

    def setUp(self):
        with mock.patch.dict(os.environ, {"OPENAI_API_KEY": ""}):
            self.engine = TriageEngine()
        self.client = mock.MagicMock()
        self.engine.openai_client = self.client
        self.engine._initialized = True

    def test_report_from_model_json(self):
        self.client.chat.completions.create.return_value = _completion(
            json.dumps(
                {
                    "severity": "Extreme",
                    "summary": "Viral infection likely.",
                    "possibleConditions": ["Influenza"],
                    "recommendations": ["Rest"],
                    "medications": ["Paracetamol"],
                    "nextSteps": ["See a GP"],
                }
            )
        )
        report = self.engine.generate_report("Arjun", "34", "fever and cough", "none")
        self.assertTrue(report["aiPowered"])
        self.assertEqual(report["severity"], SEVERITY_MEDIUM)
        self.assertEqual(report["medications"], ["Paracetamol"])
        kwargs = self.client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["response_format"], {"type": "json_object"})

    def test_unparsable_report_keeps_raw_text(self):
        self.client.chat.completions.create.return_value = _completion("not json at all")
        report = self.engine.generate_report("Arjun", "34", "fever", "")
        self.assertEqual(report["severity"], SEVERITY_MEDIUM)
        self.assertEqual(report["summary"], "not json at all")
        self.assertTrue(report["aiPowered"])

    def test_upstream_error_falls_back(self):
        self.client.chat.completions.create.side_effect = RuntimeError("429 quota")
        report = self.engine.generate_report("Arjun", "34", "chest pain", "")
        self.assertEqual(report["severity"], SEVERITY_CRITICAL)
        self.assertFalse(report["aiPowered"])

    def test_chat_sends_system_prompt_and_last_messages(self):
        self.client.chat.completions.create.return_value = _completion("Drink water.")
        messages = [{"role": "user", "content": f"q{i}"} for i in range(14)]
        result = self.engine.chat(messages, LOCALE_EN)
        self.assertEqual(result, {"reply": "Drink water.", "aiPowered": True})

        sent = self.client.chat.completions.create.call_args.kwargs["messages"]
        self.assertEqual(sent[0]["role"], "system")
        self.assertEqual(len(sent), 11)
        self.assertEqual(sent[-1]["content"], "q13")

    def test_chat_upstream_error_quotes_question(self):
        self.client.chat.completions.create.side_effect = RuntimeError("timeout")
        question = "Can I take ibuprofen together with paracetamol for a bad headache?"
        result = self.engine.chat([{"role": "user", "content": question}], LOCALE_EN)
        self.assertFalse(result["aiPowered"])
        self.assertIn(f'"{question[:50]}"', result["reply"])

    def test_document_analysis_includes_file_text(self):
        self.client.chat.completions.create.return_value = _completion(
            json.dumps({"summary": "Mild anaemia.", "findings": "Low Hb", "recommendations": "Iron"})
        )
        analysis = self.engine.analyze_document("cbc.txt", "text/plain", 2048, "Hb 9.1 g/dL")
        self.assertEqual(
            analysis,
            {"summary": "Mild anaemia.", "findings": "Low Hb", "recommendations": "Iron",
             "aiPowered": True},
        )
        prompt = self.client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        self.assertIn('"Hb 9.1 g/dL"', prompt)
        self.assertIn("2.0KB", prompt)


class TestPatientRegistry(unittest.TestCase):
    """SQLite patient registry."""

    @classmethod
    def setUpClass(cls):
        cls.tmpdir = tempfile.mkdtemp()
        cls.registry = PatientRegistry(db_path=os.path.join(cls.tmpdir, "registry.db"))

    @classmethod
    def tearDownClass(cls):
        shutil.rmtree(cls.tmpdir, ignore_errors=True)

    def setUp(self):
        self.registry.clear()

    def test_add_and_get_patient(self):
        patient = self.registry.add_patient(
            {
                "name": "Arjun",
                "age": 34,
                "symptoms": "fever and cough",
                "history": "none",
                "severity": SEVERITY_MEDIUM,
                "language_used": LOCALE_HI,
                "ai_analysis": "Rest",
            }
        )
        self.assertIsNotNone(patient)
        self.assertRegex(patient["patient_id"], r"^PT-[0-9A-F]{8}$")
        stored = self.registry.get_patient(patient["patient_id"])
        self.assertEqual(stored["name"], "Arjun")
        self.assertEqual(stored["language_used"], LOCALE_HI)

    def test_invalid_values_are_normalized(self):
        patient = self.registry.add_patient(
            {"name": "Meera", "age": "abc", "severity": "Extreme", "language_used": "fr-FR"}
        )
        self.assertEqual(patient["severity"], SEVERITY_MEDIUM)
        self.assertEqual(patient["language_used"], LOCALE_EN)
        self.assertEqual(patient["age"], 0)

    def test_list_newest_first_and_stats(self):
        first = self.registry.add_patient({"name": "A", "severity": SEVERITY_LOW})
        second = self.registry.add_patient({"name": "B", "severity": SEVERITY_CRITICAL})
        patients = self.registry.get_all_patients()
        self.assertEqual(
            [p["patient_id"] for p in patients], [second["patient_id"], first["patient_id"]]
        )

        stats = self.registry.get_severity_stats()
        self.assertEqual(stats["total"], 2)
        self.assertEqual(stats["by_severity"][SEVERITY_CRITICAL], 1)
        self.assertEqual(stats["by_severity"][SEVERITY_HIGH], 0)

    def test_delete_patient(self):
        patient = self.registry.add_patient({"name": "Ravi"})
        self.assertTrue(self.registry.delete_patient(patient["patient_id"]))
        self.assertIsNone(self.registry.get_patient(patient["patient_id"]))
        self.assertFalse(self.registry.delete_patient(patient["patient_id"]))

    def test_db_path_from_environment(self):
        path = os.path.join(self.tmpdir, "env.db")
        with mock.patch.dict(os.environ, {"CAREDESK_DB_PATH": path}):
            registry = PatientRegistry()
        self.assertEqual(str(registry.db_path), path)


class TestHospitalDirectory(unittest.TestCase):
    """Hospital directory, bed updates and the edit buffer."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.directory = HospitalDirectory(db_path=os.path.join(self.tmpdir, "hospitals.db"))
        self.hospital = next(
            h for h in self.directory.list_hospitals() if h["name"] == "Mayaganj Hospital"
        )

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_seeded_once(self):
        self.assertEqual(len(self.directory.list_hospitals()), len(SEED_HOSPITALS))
        again = HospitalDirectory(db_path=self.directory.db_path)
        self.assertEqual(len(again.list_hospitals()), len(SEED_HOSPITALS))
        self.assertEqual(len(self.directory.list_hospitals(district="Bhagalpur")), 5)
        self.assertEqual(self.directory.list_hospitals(district="Patna"), [])

    def test_specialties_roundtrip(self):
        self.assertIn("Pediatrics", self.hospital["specialties"])

    def test_update_beds(self):
        updated = self.directory.update_beds(self.hospital["id"], 10, 2)
        self.assertEqual(updated["available_beds"], 10)
        self.assertEqual(updated["available_icu_beds"], 2)

    def test_update_beds_out_of_range(self):
        with self.assertRaises(ValueError):
            self.directory.update_beds(self.hospital["id"], self.hospital["total_beds"] + 1, 0)
        with self.assertRaises(ValueError):
            self.directory.update_beds(self.hospital["id"], 5, -1)

    def test_update_unknown_hospital(self):
        self.assertIsNone(self.directory.update_beds(9999, 1, 1))

    def test_find_nearest(self):
        nearest = self.directory.find_nearest(25.2510, 86.9680, count=2)
        self.assertEqual(len(nearest), 2)
        self.assertEqual(nearest[0]["name"], "Mayaganj Hospital")
        self.assertLessEqual(nearest[0]["distance_km"], nearest[1]["distance_km"])

    def test_haversine_distance(self):
        self.assertAlmostEqual(haversine_distance(25.0, 86.0, 25.0, 86.0), 0.0)
        # One degree of latitude is roughly 111 km
        self.assertAlmostEqual(haversine_distance(25.0, 86.0, 26.0, 86.0), 111.2, delta=0.5)

    def test_edit_buffer_commit(self):
        buffer = BedEditBuffer(self.directory)
        hid = self.hospital["id"]
        buffer.stage(hid, "available_beds", 12)
        self.assertTrue(buffer.has_changes(hid))
        self.assertEqual(buffer.pending(hid), {"available_beds": 12})

        updated = buffer.commit(hid)
        self.assertEqual(updated["available_beds"], 12)
        self.assertEqual(updated["available_icu_beds"], self.hospital["available_icu_beds"])
        self.assertFalse(buffer.has_changes(hid))

    def test_edit_buffer_discard(self):
        buffer = BedEditBuffer(self.directory)
        hid = self.hospital["id"]
        buffer.stage(hid, "available_icu_beds", 1)
        buffer.discard(hid)
        self.assertFalse(buffer.has_changes(hid))
        stored = self.directory.get_hospital(hid)
        self.assertEqual(stored["available_icu_beds"], self.hospital["available_icu_beds"])

    def test_edit_buffer_rejects_invalid_values(self):
        buffer = BedEditBuffer(self.directory)
        hid = self.hospital["id"]
        with self.assertRaises(ValueError):
            buffer.stage(hid, "available_icu_beds", self.hospital["icu_beds"] + 1)
        with self.assertRaises(ValueError):
            buffer.stage(hid, "total_beds", 5)
        with self.assertRaises(ValueError):
            buffer.stage(9999, "available_beds", 1)
        self.assertFalse(buffer.has_changes(hid))

    def test_edit_buffers_are_per_hospital(self):
        buffer = BedEditBuffer(self.directory)
        other = next(h for h in self.directory.list_hospitals() if h["id"] != self.hospital["id"])
        buffer.stage(self.hospital["id"], "available_beds", 3)
        self.assertFalse(buffer.has_changes(other["id"]))

    def test_add_hospital(self):
        added = self.directory.add_hospital(
            {"name": "City Care", "district": "Patna", "lat": 25.61, "lng": 85.14,
             "total_beds": 40, "available_beds": 12, "specialties": ["Emergency"]}
        )
        self.assertEqual(added["available_beds"], 12)
        self.assertEqual(added["icu_beds"], 10)
        self.assertEqual(added["specialties"], ["Emergency"])
        self.assertEqual([h["name"] for h in self.directory.list_hospitals("Patna")], ["City Care"])

    def test_add_hospital_rejects_invalid_beds(self):
        with self.assertRaises(ValueError):
            self.directory.add_hospital(
                {"name": "City Care", "lat": 25.61, "lng": 85.14,
                 "total_beds": 10, "available_beds": 11}
            )
        with self.assertRaises(ValueError):
            self.directory.add_hospital({"name": " ", "lat": 25.61, "lng": 85.14})
        self.assertEqual(len(self.directory.list_hospitals()), len(SEED_HOSPITALS))


class TestAmbulanceFleet(unittest.TestCase):
    """Ambulances share the directory database."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.directory = HospitalDirectory(db_path=os.path.join(self.tmpdir, "fleet.db"))
        self.fleet = AmbulanceFleet(self.directory)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_seeded_with_hospital_names(self):
        ambulances = self.fleet.list_ambulances()
        self.assertEqual(len(ambulances), len(SEED_AMBULANCES))
        first = next(a for a in ambulances if a["vehicle_number"] == "BR07-AMB-2001")
        self.assertEqual(first["hospital_name"], "Mayaganj Hospital")
        self.assertEqual(len(AmbulanceFleet(self.directory).list_ambulances()), len(SEED_AMBULANCES))

    def test_district_filter(self):
        self.assertEqual(len(self.fleet.list_ambulances("Bhagalpur")), len(SEED_AMBULANCES))
        self.assertEqual(self.fleet.list_ambulances("Patna"), [])

    def test_add_ambulance(self):
        hospital = self.directory.list_hospitals()[0]
        added = self.fleet.add_ambulance(
            {"vehicle_number": "BR01-AMB-0001", "driver_name": "Ravi Prasad",
             "lat": 25.61, "lng": 85.14, "hospital_id": hospital["id"], "district": "Patna"}
        )
        self.assertEqual(added["status"], STATUS_AVAILABLE)
        self.assertEqual(added["hospital_name"], hospital["name"])
        self.assertEqual(len(self.fleet.list_ambulances("Patna")), 1)

    def test_add_ambulance_rejects_bad_records(self):
        base = {"vehicle_number": "BR01-AMB-0001", "driver_name": "Ravi", "lat": 25.6, "lng": 85.1}
        for bad in (
            dict(base, status="parked"),
            dict(base, lat=123.0),
            dict(base, hospital_id=9999),
            dict(base, driver_name=""),
            dict(base, vehicle_number="BR07-AMB-1001"),
        ):
            with self.assertRaises(ValueError):
                self.fleet.add_ambulance(bad)

    def test_update_location_and_status(self):
        ambulance = self.fleet.list_ambulances()[0]
        moved = self.fleet.update_location(ambulance["id"], 25.25, 86.98, STATUS_BUSY)
        self.assertEqual((moved["lat"], moved["lng"]), (25.25, 86.98))
        self.assertEqual(moved["status"], STATUS_BUSY)

        moved = self.fleet.update_location(ambulance["id"], 25.26, 86.99)
        self.assertEqual(moved["status"], STATUS_BUSY)

    def test_update_location_rejects_unknown_status(self):
        ambulance = self.fleet.list_ambulances()[0]
        with self.assertRaises(ValueError):
            self.fleet.update_location(ambulance["id"], 25.25, 86.98, "parked")
        self.assertEqual(self.fleet.get_ambulance(ambulance["id"])["lat"], ambulance["lat"])

    def test_update_unknown_ambulance(self):
        self.assertIsNone(self.fleet.update_location(9999, 25.25, 86.98))

    def test_status_counts(self):
        counts = self.fleet.get_status_counts()
        self.assertEqual(set(counts), set(AMBULANCE_STATUSES))
        self.assertEqual(sum(counts.values()), len(SEED_AMBULANCES))
        self.assertEqual(counts[STATUS_BUSY], 1)


class TestDocumentAnalyzer(unittest.TestCase):
    """Upload checks, text extraction and the unconfigured fallback."""

    def setUp(self):
        env = {"OPENAI_API_KEY": "", "DOCUMENT_INTELLIGENCE_KEY": ""}
        with mock.patch.dict(os.environ, env):
            self.analyzer = DocumentAnalyzer(TriageEngine())

    def test_check_document(self):
        self.assertEqual(check_document("Blood Test.PDF", 1024), ".pdf")
        with self.assertRaises(DocumentRejected):
            check_document("script.exe", 10)
        with self.assertRaises(DocumentRejected):
            check_document("scan.png", MAX_DOCUMENT_BYTES + 1)
        with self.assertRaises(DocumentRejected):
            check_document("", 10)

    def test_text_file_is_read_and_truncated(self):
        data = ("Hb 9.1 g/dL " * 400).encode("utf-8")
        text = self.analyzer.extract_text("cbc.txt", data, ".txt")
        self.assertTrue(text.startswith("Hb 9.1"))
        self.assertEqual(len(text), 2000)

    def test_scans_need_document_intelligence(self):
        self.assertIsNone(self.analyzer.client)
        self.assertEqual(self.analyzer.extract_text("xray.png", b"\x89PNG", ".png"), "")

    def test_layout_text_is_joined(self):
        page = SimpleNamespace(lines=[SimpleNamespace(content="Glucose 110"),
                                      SimpleNamespace(content="HbA1c 6.1")])
        self.analyzer.client = mock.MagicMock()
        self.analyzer.client.begin_analyze_document.return_value.result.return_value = (
            SimpleNamespace(pages=[page])
        )
        text = self.analyzer.extract_text("labs.pdf", b"%PDF", ".pdf")
        self.assertEqual(text, "Glucose 110\nHbA1c 6.1")

    def test_fallback_analysis(self):
        result = self.analyzer.analyze("cbc.txt", b"Hb 9.1", "text/plain", LOCALE_HI)
        analysis = result["analysis"]
        self.assertFalse(analysis["aiPowered"])
        self.assertEqual(
            analysis["summary"], message("document_fallback_summary", LOCALE_HI, filename="cbc.txt")
        )
        self.assertEqual(result["file"], {"originalName": "cbc.txt", "size": 6, "type": "text/plain"})

    def test_rejected_upload(self):
        with self.assertRaises(DocumentRejected):
            self.analyzer.analyze("notes.exe", b"MZ", "application/octet-stream")


if __name__ == "__main__":
    unittest.main(verbosity=2)
