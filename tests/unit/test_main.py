"""
Tests for application wiring.
"""

from conftest import FakeDiarizer, FakeTranscriber
from voxkey.events import SessionState
from voxkey.main import build_context, load_engines


def test_build_context_wires_services(config):
    """Should connect all services to each other."""
    transcriber = FakeTranscriber(loaded=False)
    diarizer = FakeDiarizer(loaded=False)

    context = build_context(config, transcriber=transcriber, diarizer=diarizer)

    assert context.coordinator.transcriber is transcriber
    assert context.coordinator.diarizer is diarizer
    assert context.coordinator.insertion is context.insertion
    assert context.coordinator.state == SessionState.IDLE
    assert context.enrollment.store is context.profile_store
    assert context.resolver.store is context.profile_store
    assert context.meeting_store.directory == config.meetings_dir()


def test_build_context_without_diarizer(config):
    """Should build without a diarizer."""
    context = build_context(config, transcriber=FakeTranscriber(), create_engines=False)
    assert context.diarizer is None
    assert context.enrollment is None


def test_load_engines(config):
    """Should load both engines."""
    transcriber = FakeTranscriber(loaded=False)
    diarizer = FakeDiarizer(loaded=False)
    context = build_context(config, transcriber=transcriber, diarizer=diarizer)

    assert load_engines(context)
    assert transcriber.is_loaded
    assert diarizer.is_loaded


def test_load_engines_without_transcriber(config):
    """Should fail without a transcription engine."""
    context = build_context(config, create_engines=False)
    assert not load_engines(context)
