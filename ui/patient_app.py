"""
Patient Consultation App - CareDesk
===================================
Patient-facing AI consultation desk. Walks the patient through the
intake questions, shows the generated report and then offers a health
chat. Voice input and spoken prompts use Azure Speech when configured;
typed input always works.

Each browser session owns one event loop running in a daemon thread, so
patient registration keeps going after the report is shown. Button
handlers block until their action finishes: a prompt that is playing
runs to its end before the Reset button is processed.

Run: streamlit run ui/patient_app.py
(the API server must be running: python caredesk_server.py)
"""

import asyncio
import logging
import sys
import threading
from pathlib import Path

import streamlit as st

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from caredesk.consultation import ConsultationSession
from caredesk.gateway_client import AIGatewayClient, PatientRegistryClient
from caredesk.intake_flow import INTAKE_STEPS, Stage, VoiceState
from caredesk.locales import LANGUAGE_NAMES, SUPPORTED_LOCALES
from caredesk.severity import SEVERITY_COLORS
from caredesk.speech_handler import AzureSpeechAdapter

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

st.set_page_config(
    page_title="CareDesk Consultation",
    page_icon="🩺",
    layout="centered",
)

st.markdown(
    """
<style>
.block-container { max-width: 720px; }
.stButton > button { min-height: 48px; border-radius: 10px; }
</style>
""",
    unsafe_allow_html=True,
)

VOICE_LABELS = {
    VoiceState.IDLE: "💤 Idle",
    VoiceState.LISTENING: "🎙️ Listening…",
    VoiceState.THINKING: "🧠 Thinking…",
    VoiceState.SPEAKING: "🔊 Speaking…",
}


# ---------------------------------------------------------------------------
# Service loader
# ---------------------------------------------------------------------------
@st.cache_resource
def load_services() -> tuple:
    """Create the API clients shared by every browser session.

    Returns:
        Tuple of (AIGatewayClient, PatientRegistryClient, dict[service_name, bool]).
    """
    gateway = AIGatewayClient()
    registry = PatientRegistryClient()
    status = {
        "CareDesk API": True,
        "Speech Services": AzureSpeechAdapter.is_available(),
    }
    return gateway, registry, status


gateway_client, registry_client, _svc_status = load_services()


def get_session() -> ConsultationSession:
    """One consultation (and speech adapter) per browser session."""
    if "consultation" not in st.session_state:
        st.session_state.consultation = ConsultationSession(
            gateway=gateway_client,
            speech=AzureSpeechAdapter(),
            registry=registry_client,
        )
    return st.session_state.consultation


def get_loop() -> asyncio.AbstractEventLoop:
    """Event loop for this browser session, kept alive between reruns."""
    if "event_loop" not in st.session_state:
        loop = asyncio.new_event_loop()
        threading.Thread(target=loop.run_forever, name="consultation-loop", daemon=True).start()
        st.session_state.event_loop = loop
    return st.session_state.event_loop


def run(coro) -> None:
    """Run one session action to completion on the session's loop."""
    future = asyncio.run_coroutine_threadsafe(coro, get_loop())
    try:
        future.result()
    except Exception as exc:
        logger.error("Consultation action failed: %s", exc)
        st.error(f"Action failed: {exc}")


# ---------------------------------------------------------------------------
# Panels
# ---------------------------------------------------------------------------
def render_input(session: ConsultationSession, placeholder: str) -> None:
    """Typed input plus microphone buttons when speech is available."""
    with st.form("answer_form", clear_on_submit=True):
        text = st.text_input(placeholder, key="answer_text")
        submitted = st.form_submit_button("Send ➜", type="primary", use_container_width=True)
    if submitted and text.strip():
        with st.spinner("…"):
            run(session.accept_input(text))
        st.rerun()

    if not session.speech_supported:
        return

    col1, col2 = st.columns(2)
    with col1:
        if st.button("🎙️ Speak", use_container_width=True, disabled=session.listening):
            run(session.listen())
            st.rerun()
    with col2:
        if st.button("✅ Done speaking", use_container_width=True, disabled=not session.listening):
            with st.spinner("…"):
                run(session.finish_listening())
            st.rerun()

    if session.listening and session.interim_transcript:
        st.caption(f"🗣️ {session.interim_transcript}")


def page_welcome(session: ConsultationSession) -> None:
    st.markdown("## 🩺 AI Medical Consultation")
    st.markdown(
        "Answer a few short questions and receive a preliminary health report. "
        "You can speak or type."
    )
    if st.button("▶️ Start consultation", type="primary", use_container_width=True):
        with st.spinner("…"):
            run(session.start())
        st.rerun()


def page_intake(session: ConsultationSession) -> None:
    state = session.state
    language = state.language
    step = state.current_step

    st.progress(state.current_step_index / len(INTAKE_STEPS))
    st.caption(f"Question {state.current_step_index + 1} / {len(INTAKE_STEPS)}")

    for done in INTAKE_STEPS[: state.current_step_index]:
        st.markdown(f"**{done.label_for(language)}:** {state.draft.get(done.key, '')}")

    if step is not None:
        st.markdown(f"### {step.prompt_for(language)}")
        render_input(session, step.label_for(language))


def page_report(session: ConsultationSession) -> None:
    report = session.state.report
    if report is None:
        st.info("Generating your report…")
        return

    icon = SEVERITY_COLORS.get(report.severity, "⚪")
    st.markdown(f"## {icon} Severity: {report.severity}")
    if report.summary:
        st.markdown(report.summary)

    sections = [
        ("🔍 Possible conditions", report.possible_conditions),
        ("✅ Recommendations", report.recommendations),
        ("💊 Medications", report.medications),
        ("➡️ Next steps", report.next_steps),
    ]
    for title, items in sections:
        if items:
            st.markdown(f"**{title}**")
            for item in items:
                st.markdown(f"- {item}")

    st.divider()
    if session.state.stage is Stage.REPORT:
        if st.button("💬 Ask a health question", type="primary", use_container_width=True):
            with st.spinner("…"):
                run(session.continue_chat())
            st.rerun()


def page_chat(session: ConsultationSession) -> None:
    st.markdown("### 💬 Health chat")
    for msg in session.state.chat_history:
        with st.chat_message(msg.role):
            st.markdown(msg.content)

    if session.state.chat_loading:
        st.info("…")
        return
    render_input(session, "Your question")


def render_guarded(panel, session: ConsultationSession) -> None:
    """Render a panel; a failure is shown in place of the panel."""
    try:
        panel(session)
    except Exception as exc:
        logger.error("Panel %s failed: %s", panel.__name__, exc)
        st.error("This panel could not be displayed. Please reset the consultation.")


# ---------------------------------------------------------------------------
# Sidebar: language, voice state and service status
# ---------------------------------------------------------------------------
def render_sidebar(session: ConsultationSession) -> None:
    with st.sidebar:
        st.markdown("### 🩺 CareDesk")
        st.caption("AI-assisted patient intake")
        st.divider()

        current = session.state.language
        choice = st.radio(
            "Language",
            SUPPORTED_LOCALES,
            index=SUPPORTED_LOCALES.index(current),
            format_func=lambda code: LANGUAGE_NAMES[code],
        )
        if choice != current:
            run(session.set_language(choice))
            st.rerun()

        st.caption(VOICE_LABELS[session.state.voice_state])
        st.divider()

        st.markdown("**Services Status:**")
        for service_name, is_live in _svc_status.items():
            icon = "✅" if is_live else "⚠️"
            mode = "Live" if is_live else "Not configured"
            st.markdown(f"{icon} {service_name} — *{mode}*")

        st.divider()
        if st.button("🔄 Reset consultation", use_container_width=True):
            run(session.reset())
            st.rerun()

        st.caption("⚠️ Demo system only. Call 112 for real emergencies.")


# ---------------------------------------------------------------------------
# Main router
# ---------------------------------------------------------------------------
def main() -> None:
    session = get_session()
    render_sidebar(session)

    for notice in session.notices:
        st.warning(notice)

    stage = session.state.stage
    if stage is Stage.NOT_STARTED:
        page_welcome(session)
    elif stage is Stage.INTAKE:
        page_intake(session)
    elif stage in (Stage.GENERATING, Stage.REPORT):
        render_guarded(page_report, session)
    else:
        render_guarded(page_report, session)
        render_guarded(page_chat, session)


if __name__ == "__main__":
    main()
