"""
Dictation session state machine.

    IDLE --start--> RECORDING --stop--> PROCESSING --done--> IDLE
                                        PROCESSING --fail--> ERROR --> IDLE
    any --cancel--> IDLE

Everything here runs on the asyncio loop that owns the coordinator. Capture
happens on the audio callback thread; conversion and inference run in worker
threads. Only one pipeline is in flight at a time. A cancelled pipeline is
not awaited: it finishes in the background and its results are dropped.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

import scipy.io.wavfile as wav

from .audio.capture import AudioCaptureSession
from .audio.normalizer import AudioBuffer, AudioNormalizer, NormalizedAudio
from .engines.base import DiarizationEngine, TranscriptionEngine
from .errors import ModelsNotLoaded, TranscriptionNotInitialized, VoxkeyError
from .events import (
    AudioLevelChanged,
    EventBus,
    MeetingUpdated,
    SessionFailed,
    SessionState,
    SessionStateChanged,
    TranscriptionCompleted,
)
from .insertion import TextInsertionController
from .logger import get_logs_dir, log_error, log_exception
from .meeting.importer import MeetingImporter
from .meeting.models import Meeting, MeetingSegment, MeetingStatus
from .meeting.store import MeetingStore
from .speakers.resolver import SpeakerIdentityResolver
from .transcription import transcribe
from .utils import ConfigManager, TextProcessor

logger = logging.getLogger(__name__)

PUSH_TO_TALK = "push_to_talk"
TOGGLE = "toggle"
DICTATION_TITLE = "Dictation"


@dataclass
class DictationSession:
    """One hotkey-triggered recording and its processing."""
    mode: str
    capture: AudioCaptureSession
    started_at: float
    meeting: Optional[Meeting] = None
    cancelled: bool = False
    task: Optional[asyncio.Task] = None


class DictationSessionCoordinator:
    """Sequences capture, conversion, transcription, delivery and persistence."""

    def __init__(
        self,
        config: ConfigManager,
        events: EventBus,
        normalizer: AudioNormalizer,
        transcriber: Optional[TranscriptionEngine],
        insertion: TextInsertionController,
        meeting_store: MeetingStore,
        text_processor: TextProcessor,
        diarizer: Optional[DiarizationEngine] = None,
        resolver: Optional[SpeakerIdentityResolver] = None,
        capture_factory: Optional[Callable[[Callable[[float], None]], AudioCaptureSession]] = None,
        clock: Callable[[], float] = time.monotonic,
        logs_dir: Optional[Union[str, Path]] = None,
    ):
        self.config = config
        self.events = events
        self.normalizer = normalizer
        self.transcriber = transcriber
        self.insertion = insertion
        self.meeting_store = meeting_store
        self.text_processor = text_processor
        self.diarizer = diarizer
        self.resolver = resolver
        self._capture_factory = capture_factory or self._default_capture
        self._clock = clock
        self._logs_dir = Path(logs_dir) if logs_dir else None

        self._state = SessionState.IDLE
        self._session: Optional[DictationSession] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._meeting: Optional[Meeting] = None
        self._meeting_started_at = 0.0
        self.pipeline_task: Optional[asyncio.Task] = None

    # --- State ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[DictationSession]:
        return self._session

    @property
    def active_meeting(self) -> Optional[Meeting]:
        return self._meeting

    def _set_state(self, new: SessionState) -> None:
        old, self._state = self._state, new
        if old != new:
            logger.debug(f"Session state {old.value} -> {new.value}")
            self.events.publish(SessionStateChanged(old=old, new=new))

    def _abandoned(self, session: DictationSession) -> bool:
        return session.cancelled or self._session is not session

    # --- Capture ---

    def _default_capture(self, on_level: Callable[[float], None]) -> AudioCaptureSession:
        recording = self.config.get_config_section('recording')
        return AudioCaptureSession(
            device=recording.get('sound_device'),
            sample_rate=recording.get('sample_rate'),
            channels=recording.get('channels') or 1,
            max_duration=float(recording.get('max_duration') or 60.0),
            on_level=on_level,
        )

    def _forward_level(self, level: float) -> None:
        # Called on the audio thread
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self.events.publish, AudioLevelChanged(level=level))

    # --- Hotkey entry points ---

    def on_hotkey_press(self) -> None:
        if self._state == SessionState.IDLE:
            self.start_session()
        elif self._state == SessionState.RECORDING and self._session and self._session.mode == TOGGLE:
            self.stop_session()
        else:
            logger.debug(f"Hotkey press ignored while {self._state.value}")

    def on_hotkey_release(self) -> None:
        if self._state == SessionState.RECORDING and self._session and self._session.mode == PUSH_TO_TALK:
            self.stop_session()

    def on_cancel(self) -> None:
        if self._state in (SessionState.RECORDING, SessionState.PROCESSING):
            self.cancel_session()

    # --- Session control ---

    def start_session(self) -> bool:
        """Start recording. Rejected unless idle."""
        if self._state != SessionState.IDLE:
            logger.info(f"Start rejected: session is {self._state.value}")
            return False

        self._loop = asyncio.get_running_loop()
        mode = self.config.get_config_value('hotkey', 'mode') or PUSH_TO_TALK
        capture = self._capture_factory(self._forward_level)
        try:
            capture.start()
        except Exception as e:
            log_error("Could not open the microphone", e)
            self.events.publish(SessionFailed(error=type(e).__name__, message=f"Could not open the microphone: {e}"))
            self._set_state(SessionState.ERROR)
            self._set_state(SessionState.IDLE)
            return False

        self._session = DictationSession(mode=mode, capture=capture, started_at=self._clock(), meeting=self._meeting)
        self._set_state(SessionState.RECORDING)
        logger.info(f"Recording started ({mode})")
        return True

    def stop_session(self) -> Optional[asyncio.Task]:
        """Stop recording and start processing. Returns the pipeline task."""
        session = self._session
        if self._state != SessionState.RECORDING or session is None:
            return None

        buffer = session.capture.stop()
        self._set_state(SessionState.PROCESSING)
        logger.info(f"Recording stopped: {buffer.duration:.2f}s captured")
        session.task = asyncio.get_running_loop().create_task(self._run_pipeline(session, buffer))
        self.pipeline_task = session.task
        return session.task

    def cancel_session(self) -> None:
        """Drop the current session. An in-flight pipeline is left to finish unobserved."""
        session = self._session
        if session is None:
            return
        session.cancelled = True
        if self._state == SessionState.RECORDING:
            session.capture.abort()
        self._session = None
        logger.info("Session cancelled")
        self._set_state(SessionState.IDLE)

    # --- Pipeline ---

    def _diarization_enabled(self) -> bool:
        return bool(self.config.get_config_value('diarization', 'enabled'))

    async def _run_pipeline(self, session: DictationSession, buffer: AudioBuffer) -> None:
        audio = None
        try:
            audio = await asyncio.to_thread(self.normalizer.normalize, buffer)
            del buffer
            if self._abandoned(session):
                return

            min_duration_ms = self.config.get_config_value('recording', 'min_duration') or 0
            if audio.duration * 1000 < min_duration_ms:
                logger.info(f"Discarded recording ({audio.duration:.2f}s is too short)")
                self._finish(session)
                return

            text, speaker_id, speaker_name = await self._transcribe(audio)
            if self._abandoned(session):
                logger.debug("Dropping results of a cancelled session")
                return

            if not text or not text.strip():
                logger.info("Empty transcription, nothing to deliver")
                self._finish(session)
                return

            self.events.publish(TranscriptionCompleted(text=text, speaker_id=speaker_id, speaker_name=speaker_name))

            if session.meeting is None or self.config.get_config_value('meeting', 'deliver_text'):
                delivered_text = text
                if speaker_name and self.config.get_config_value('diarization', 'annotate_text'):
                    delivered_text = f"{speaker_name}: {text}"
                await self.insertion.insert_text(delivered_text)
                if self._abandoned(session):
                    logger.debug("Session cancelled during delivery, not recording it")
                    return

            self._record(session, text, speaker_id, speaker_name, audio)
            self._finish(session)

        except Exception as e:
            if self._abandoned(session):
                logger.info(f"Cancelled session failed in the background: {e}")
                return
            self._fail(session, e, audio)

    async def _transcribe(self, audio: NormalizedAudio):
        """Run transcription, and diarization when enabled, concurrently."""
        if self.transcriber is None or not self.transcriber.is_loaded:
            raise TranscriptionNotInitialized()

        if not self._diarization_enabled():
            result = await asyncio.to_thread(transcribe, self.transcriber, audio, self.config)
            return self.text_processor.process(result.text), None, None

        if self.diarizer is None or self.resolver is None or not self.diarizer.is_loaded:
            raise ModelsNotLoaded("Speaker diarization is enabled but its models are not loaded.")

        self.resolver.prepare(self.diarizer)
        result, diarization = await asyncio.gather(
            asyncio.to_thread(transcribe, self.transcriber, audio, self.config),
            asyncio.to_thread(self.diarizer.diarize_offline, audio.samples, audio.sample_rate),
        )
        speaker_id, speaker_name = self.resolver.resolve_dominant(diarization)
        return self.text_processor.process(result.text), speaker_id, speaker_name

    def _finish(self, session: DictationSession) -> None:
        if self._session is session:
            self._session = None
        self._set_state(SessionState.IDLE)

    def _fail(self, session: DictationSession, error: Exception, audio: Optional[NormalizedAudio]) -> None:
        if isinstance(error, VoxkeyError):
            log_error("Dictation failed", error)
        else:
            log_exception(error, "in dictation pipeline")

        self._save_failed_audio(audio)
        message = str(error) or "Transcription failed"
        self.events.publish(SessionFailed(error=type(error).__name__, message=message))
        if self._session is session:
            self._session = None
        self._set_state(SessionState.ERROR)
        self._set_state(SessionState.IDLE)

    def _save_failed_audio(self, audio: Optional[NormalizedAudio]) -> Optional[Path]:
        """Keep the recording of a failed session so it is not lost."""
        if audio is None or len(audio.samples) == 0:
            return None
        if not self.config.get_config_value('misc', 'save_failed_audio'):
            return None

        logs_dir = self._logs_dir or get_logs_dir()
        path = logs_dir / f"failed_audio_{datetime.now().strftime('%Y%m%d_%H%M%S')}.wav"
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
            wav.write(str(path), audio.sample_rate, audio.samples)
        except OSError as e:
            log_error("Failed to save audio of failed session", e)
            return None
        logger.info(f"Saved failed audio to {path}")
        return path

    # --- Persistence ---

    def _save_meeting(self, meeting: Meeting) -> bool:
        try:
            self.meeting_store.save(meeting)
        except OSError as e:
            log_error(f"Failed to save meeting {meeting.id}", e)
            self.events.publish(SessionFailed(error=type(e).__name__, message=f"Could not save meeting: {e}"))
            return False
        self.events.publish(MeetingUpdated(meeting_id=meeting.id, completed=meeting.status == MeetingStatus.COMPLETED))
        return True

    def _record(self, session: DictationSession, text: str, speaker_id: Optional[str],
                speaker_name: Optional[str], audio: NormalizedAudio) -> None:
        meeting = session.meeting
        if meeting is not None:
            timestamp = max(0.0, session.started_at - self._meeting_started_at)
            if meeting.segments:
                timestamp = max(timestamp, meeting.segments[-1].timestamp)
            meeting.add_segment(MeetingSegment(
                text=text, timestamp=timestamp, speaker_id=speaker_id, speaker_name=speaker_name,
            ))
            meeting.duration = max(meeting.duration, timestamp + audio.duration)
            self._save_meeting(meeting)
            return

        if not self.config.get_config_value('misc', 'history_enabled'):
            return

        record = Meeting(title=DICTATION_TITLE, duration=audio.duration)
        record.add_segment(MeetingSegment(text=text, timestamp=0.0, speaker_id=speaker_id, speaker_name=speaker_name))
        record.finalize()
        self._save_meeting(record)

    # --- Meeting mode ---

    def start_meeting(self, title: Optional[str] = None) -> Meeting:
        """Begin collecting dictation sessions into a meeting."""
        if self._meeting is not None:
            raise RuntimeError("A meeting is already in progress")

        meeting = Meeting(title=title or f"Meeting {datetime.now().strftime('%Y-%m-%d %H:%M')}")
        self._meeting = meeting
        self._meeting_started_at = self._clock()
        self._save_meeting(meeting)
        logger.info(f"Meeting started: {meeting.title} ({meeting.id})")
        return meeting

    async def end_meeting(self) -> Optional[Meeting]:
        """Finish the active meeting, waiting for any in-flight session first."""
        meeting = self._meeting
        if meeting is None:
            return None

        if self._state == SessionState.RECORDING:
            self.stop_session()
        task = self.pipeline_task
        if task is not None and not task.done() and self._session is not None and self._session.task is task:
            await task

        self._meeting = None
        meeting.set_status(MeetingStatus.PROCESSING)
        self._save_meeting(meeting)
        meeting.finalize(duration=self._clock() - self._meeting_started_at)
        self._save_meeting(meeting)
        logger.info(f"Meeting completed: {meeting.title} ({len(meeting.segments)} segments)")
        return meeting

    def rename_speaker(self, speaker_id: str, name: str) -> int:
        """Rename a speaker throughout the active meeting."""
        if self._meeting is None:
            return 0
        changed = self._meeting.rename_speaker(speaker_id, name)
        if changed:
            self._save_meeting(self._meeting)
        return changed

    async def import_meeting(self, path: Union[str, Path], title: Optional[str] = None) -> Meeting:
        """Transcribe an audio file into a completed meeting and store it."""
        if self._state != SessionState.IDLE or self._meeting is not None:
            raise RuntimeError("Cannot import while a dictation or meeting is in progress")

        importer = MeetingImporter(
            config=self.config,
            normalizer=self.normalizer,
            transcriber=self.transcriber,
            text_processor=self.text_processor,
            diarizer=self.diarizer,
            resolver=self.resolver,
        )
        meeting = await asyncio.to_thread(importer.import_file, path, title)
        self._save_meeting(meeting)
        return meeting
