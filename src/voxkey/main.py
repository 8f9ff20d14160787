"""
Application wiring and the background dictation loop.

``build_context`` creates every long-lived component once and hands them to
each other explicitly; nothing is looked up through globals.
"""

import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import dataclass
from typing import Optional

from . import compat
from .audio.normalizer import AudioNormalizer
from .coordinator import DictationSessionCoordinator
from .engines import DiarizationEngine, EngineNotAvailableError, TranscriptionEngine
from .errors import VoxkeyError
from .events import DeliveryBroken, EventBus, SessionFailed, SessionStateChanged, TranscriptionCompleted
from .insertion import TextInsertionController
from .key_listener import KeyListener
from .logger import setup_logging
from .meeting.store import MeetingStore
from .speakers.enrollment import SpeakerEnrollmentManager
from .speakers.profiles import SpeakerProfileStore
from .speakers.resolver import SpeakerIdentityResolver
from .transcription import (
    create_diarization_engine,
    create_local_engine,
    load_local_engine,
)
from .utils import ConfigManager, TextProcessor

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """The long-lived services of one running instance."""
    config: ConfigManager
    events: EventBus
    normalizer: AudioNormalizer
    text_processor: TextProcessor
    transcriber: Optional[TranscriptionEngine]
    diarizer: Optional[DiarizationEngine]
    profile_store: SpeakerProfileStore
    enrollment: Optional[SpeakerEnrollmentManager]
    resolver: SpeakerIdentityResolver
    insertion: TextInsertionController
    meeting_store: MeetingStore
    coordinator: DictationSessionCoordinator


def _create_engines(config: ConfigManager, with_diarizer: bool):
    transcriber = None
    try:
        transcriber = create_local_engine(config)
    except (EngineNotAvailableError, RuntimeError, ValueError) as e:
        logger.error(f"No transcription engine: {e}")

    diarizer = None
    if with_diarizer:
        try:
            diarizer = create_diarization_engine(config)
        except (EngineNotAvailableError, ValueError) as e:
            logger.error(f"No diarization engine: {e}")
    return transcriber, diarizer


def build_context(
    config: ConfigManager,
    transcriber: Optional[TranscriptionEngine] = None,
    diarizer: Optional[DiarizationEngine] = None,
    create_engines: bool = True,
    with_diarizer: Optional[bool] = None,
) -> AppContext:
    """Create and connect all services. Engines are created but not loaded."""
    if with_diarizer is None:
        with_diarizer = bool(config.get_config_value('diarization', 'enabled'))
    if create_engines and transcriber is None and diarizer is None:
        transcriber, diarizer = _create_engines(config, with_diarizer)

    events = EventBus()
    normalizer = AudioNormalizer()
    text_processor = TextProcessor(config)

    profile_store = SpeakerProfileStore(config.profiles_file())
    profile_store.load()
    resolver = SpeakerIdentityResolver(profile_store)
    enrollment = SpeakerEnrollmentManager(diarizer, profile_store) if diarizer is not None else None

    insertion = TextInsertionController(config, events)
    meeting_store = MeetingStore(config.meetings_dir())

    coordinator = DictationSessionCoordinator(
        config=config,
        events=events,
        normalizer=normalizer,
        transcriber=transcriber,
        insertion=insertion,
        meeting_store=meeting_store,
        text_processor=text_processor,
        diarizer=diarizer,
        resolver=resolver,
    )

    return AppContext(
        config=config,
        events=events,
        normalizer=normalizer,
        text_processor=text_processor,
        transcriber=transcriber,
        diarizer=diarizer,
        profile_store=profile_store,
        enrollment=enrollment,
        resolver=resolver,
        insertion=insertion,
        meeting_store=meeting_store,
        coordinator=coordinator,
    )


def load_engines(context: AppContext) -> bool:
    """Load the engine models (slow). Returns False if transcription is unavailable."""
    if context.transcriber is None or not load_local_engine(context.transcriber, context.config):
        return False
    if context.diarizer is not None and not context.diarizer.load():
        logger.warning("Diarization models failed to load; speaker identification is disabled")
    return True


def _subscribe_notifications(events: EventBus) -> None:
    """Log user-facing events (stands in for tray notifications)."""
    events.subscribe(SessionStateChanged, lambda e: logger.debug(f"State: {e.new.value}"))
    events.subscribe(TranscriptionCompleted, lambda e: logger.info(
        f"Transcribed{' (' + e.speaker_name + ')' if e.speaker_name else ''}: {e.text[:50]}"
    ))
    events.subscribe(SessionFailed, lambda e: logger.error(f"Transcription failed: {e.message}"))
    events.subscribe(DeliveryBroken, lambda e: logger.error(
        f"Text could not be pasted {e.failures} times in a row. "
        "Check accessibility/automation permissions; the text is still on the clipboard."
    ))


async def run_dictation(context: AppContext, meeting_title: Optional[str] = None) -> None:
    """Listen for the hotkey until interrupted."""
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops don't support signal handlers
            pass

    coordinator = context.coordinator
    hotkey = context.config.get_config_section('hotkey')
    listener = KeyListener(
        key=hotkey.get('key') or 'space',
        modifiers=hotkey.get('modifiers') or [],
        cancel_key=hotkey.get('cancel_key'),
        on_press=coordinator.on_hotkey_press,
        on_release=coordinator.on_hotkey_release,
        on_cancel=coordinator.on_cancel,
        loop=loop,
    )

    if meeting_title is not None:
        coordinator.start_meeting(meeting_title or None)

    listener.start()
    try:
        await stop.wait()
    finally:
        listener.stop()
        if coordinator.active_meeting is not None:
            meeting = await coordinator.end_meeting()
            logger.info(f"Saved meeting '{meeting.title}'")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="voxkey - hotkey dictation with speaker identification")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--meeting", nargs="?", const="", metavar="TITLE",
                        help="Collect dictations into a meeting until exit")
    parser.add_argument("--import", dest="import_file", metavar="AUDIO",
                        help="Transcribe an audio file into a meeting and exit")
    parser.add_argument("--title", help="Title for --import")
    parser.add_argument("--list-meetings", action="store_true", help="List stored meetings and exit")
    parser.add_argument("--export", nargs=2, metavar=("MEETING_ID", "DIR"),
                        help="Export a stored meeting as markdown and exit")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    config = ConfigManager(config_path=args.config)
    setup_logging(
        level=config.get_config_value('misc', 'log_level') or 'INFO',
        print_to_terminal=bool(config.get_config_value('misc', 'print_to_terminal')),
    )

    if args.list_meetings:
        for meeting in MeetingStore(config.meetings_dir()).load_all():
            print(f"{meeting.date:%Y-%m-%d %H:%M}  {meeting.status.value:<10}  {meeting.title}  ({meeting.id})")
        return 0

    if args.export:
        meeting_id, output_dir = args.export
        store = MeetingStore(config.meetings_dir())
        try:
            meeting = store.load(meeting_id)
        except VoxkeyError as e:
            print(f"Error: {e}")
            return 1
        if meeting is None:
            print(f"No meeting with id {meeting_id}")
            return 1
        print(store.export_markdown(meeting, output_dir))
        return 0

    lock = compat.acquire_single_instance_lock()
    try:
        context = build_context(config)
        _subscribe_notifications(context.events)
        if not load_engines(context):
            print("Failed to load the transcription model. See logs/voxkey_errors.log.")
            return 1

        if args.import_file:
            meeting = asyncio.run(context.coordinator.import_meeting(args.import_file, args.title))
            print(meeting.final_transcript)
            return 0

        print("voxkey is running. Press Ctrl+C to quit.")
        asyncio.run(run_dictation(context, args.meeting))
        return 0
    except VoxkeyError as e:
        print(f"Error: {e}")
        return 1
    finally:
        compat.release_single_instance_lock(lock)


if __name__ == "__main__":
    sys.exit(main())
