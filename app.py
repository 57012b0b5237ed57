"""
Streamlit app for the live tuner.

Run with:  streamlit run app.py

The app never touches audio itself. It owns a TunerSession, forwards the
Start/Stop buttons to session.start()/stop(), and subscribes to the
session's events. Events arrive on the session's analysis thread, so the
listener only stores the newest one; each script run reads it, draws it,
and reruns shortly after while listening.
"""

import logging
import threading
import time

import streamlit as st

from tuner.audio import MicrophoneSource, SyntheticSource
from tuner.config import LOG_FORMAT, LOG_LEVEL, TUNINGS
from tuner.errors import DeviceUnavailable
from tuner.pitch import make_estimator
from tuner.session import TunerFailure, TunerGap, TunerResult, TunerSession

REFRESH_SECONDS = 0.25

ESTIMATOR_LABELS = {
    "YIN (time domain)": "yin",
    "FFT peak": "peak",
    "CREPE (Pre-trained)": "crepe",
}

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)

st.set_page_config(page_title="Tuner", layout="centered")
st.title("Tuner")
st.caption("Live pitch detection")


class LatestEvent:
    """Thread-safe holder for the newest TunerEvent."""

    def __init__(self):
        self._lock = threading.Lock()
        self._event = None

    def __call__(self, event):
        with self._lock:
            self._event = event

    def get(self):
        with self._lock:
            return self._event

    def clear(self):
        with self._lock:
            self._event = None


@st.cache_resource
def load_estimator(name):
    return make_estimator(name)


# --- Session state init ---
if "latest" not in st.session_state:
    st.session_state.latest = LatestEvent()
if "session" not in st.session_state:
    st.session_state.session = None
    st.session_state.settings = None

# --- Tuning and estimator selection ---
col_tuning, col_model = st.columns(2)
with col_tuning:
    tuning_name = st.selectbox("Tuning", list(TUNINGS.keys()))
with col_model:
    estimator_label = st.selectbox("Pitch detection", list(ESTIMATOR_LABELS.keys()))

active_tuning = TUNINGS[tuning_name]

# --- Demo mode: a generated tone instead of the microphone ---
demo = st.sidebar.checkbox("Demo tone (no microphone)")
demo_freq = st.sidebar.number_input("Demo frequency (Hz)", 40.0, 2000.0, 110.0, disabled=not demo)

settings = (tuning_name, ESTIMATOR_LABELS[estimator_label], demo, demo_freq)


def current_session():
    """The session for the selected settings; replaced when they change."""
    session = st.session_state.session
    if session is not None and st.session_state.settings == settings:
        return session

    was_listening = session is not None and session.listening
    if session is not None:
        session.stop()

    session = TunerSession(
        SyntheticSource(demo_freq, n_harmonics=4) if demo else MicrophoneSource(),
        estimator=load_estimator(settings[1]),
        tuning=active_tuning,
    )
    session.subscribe(st.session_state.latest)
    st.session_state.session = session
    st.session_state.settings = settings
    st.session_state.latest.clear()
    if was_listening:
        start_listening()
    return session


def start_listening():
    try:
        st.session_state.session.start()
    except DeviceUnavailable as exc:
        st.session_state.start_error = str(exc)
    else:
        st.session_state.start_error = None


def stop_listening():
    st.session_state.session.stop()
    st.session_state.latest.clear()


session = current_session()

# --- Show target frequencies ---
st.subheader(tuning_name)
cols = st.columns(len(active_tuning))
for i, (note, freq) in enumerate(active_tuning.items()):
    cols[i].metric(note, f"{freq:.0f} Hz")

st.divider()

# --- Start / Stop ---
if session.listening:
    st.button("Stop Listening", on_click=stop_listening, type="primary")
else:
    st.button("Start Listening", on_click=start_listening, type="primary")

if st.session_state.get("start_error"):
    st.error(f"Microphone unavailable: {st.session_state.start_error}")

# --- Display results ---
event = st.session_state.latest.get()

if isinstance(event, TunerResult):
    if event.detected:
        note, target = event.note, event.target
        col1, col2, col3 = st.columns(3)
        col1.metric("Detected Note", note.name)
        col2.metric("Frequency", f"{event.pitch.frequency:.1f} Hz")
        col3.metric("Cents Off", f"{note.cents:+.1f}")

        if target is not None:
            if abs(target.cents) < 5:
                st.success(f"{target.label} in tune!")
            elif target.cents > 0:
                st.warning(f"{target.label}: sharp by {target.cents:.1f} cents -- tune down")
            else:
                st.warning(f"{target.label}: flat by {abs(target.cents):.1f} cents -- tune up")
    else:
        st.info("No pitch detected")

    spectrum = event.spectrum
    st.line_chart(
        {"Frequency (Hz)": spectrum.frequencies, "Magnitude (dB)": spectrum.to_db()},
        x="Frequency (Hz)",
        y="Magnitude (dB)",
    )
elif isinstance(event, TunerGap):
    st.info("Waiting for audio...")
elif isinstance(event, TunerFailure):
    st.error(f"{type(event.error).__name__}: {event.error}")

# --- Keep redrawing while the session listens ---
if session.listening:
    time.sleep(REFRESH_SECONDS)
    st.rerun()
