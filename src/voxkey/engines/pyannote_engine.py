"""
Speaker diarization using pyannote-audio.
Identifies different speakers in audio and matches them to enrolled voices.

Setup required:
1. pip install pyannote.audio
2. Accept license at https://huggingface.co/pyannote/speaker-diarization-3.1
3. Accept license at https://huggingface.co/pyannote/wespeaker-voxceleb-resnet34-LM
4. Set HF_TOKEN environment variable with your HuggingFace token
"""

import logging
import os
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..errors import ModelsNotLoaded
from .base import DiarizationEngine, DiarizationResult, SpeakerSegment
from .factory import register_diarizer

logger = logging.getLogger(__name__)

# pyannote is optional - only needed when diarization is enabled
PYANNOTE_AVAILABLE = False
try:
    import torch
    from pyannote.audio import Inference, Model, Pipeline
    PYANNOTE_AVAILABLE = True
except ImportError:
    pass

PIPELINE_ID = "pyannote/speaker-diarization-3.1"
EMBEDDING_MODEL_ID = "pyannote/wespeaker-voxceleb-resnet34-LM"

MIN_EMBEDDING_SECONDS = 0.5  # Need at least 0.5s of audio for a reliable embedding
SILENCE_RMS = 1e-4


def _hf_token() -> Optional[str]:
    return os.environ.get("HF_TOKEN") or os.environ.get("HUGGINGFACE_TOKEN")


@register_diarizer
class PyannoteDiarizer(DiarizationEngine):
    """
    Diarization with the pyannote pipeline and wespeaker embeddings.

    Offline mode runs the full pipeline over the recording. Streaming mode
    walks the recording in fixed windows, embeds each window and clusters the
    windows on the fly with a running-average centroid per speaker.
    """

    ENGINE_ID = "pyannote"
    ENGINE_NAME = "pyannote.audio"

    def __init__(self, device: str = "cpu", similarity_threshold: float = 0.25, window_seconds: float = 3.0):
        super().__init__()
        self._device = device
        self._similarity_threshold = similarity_threshold  # Cosine similarity threshold for matching
        self._window_seconds = window_seconds
        self._pipeline = None
        self._embedding_inference = None

    @classmethod
    def is_available(cls) -> bool:
        """Check if pyannote-audio is installed and a HuggingFace token is configured."""
        return PYANNOTE_AVAILABLE and bool(_hf_token())

    @classmethod
    def get_install_hint(cls) -> str:
        return "pip install 'voxkey[engines]' and set HF_TOKEN in .env"

    def load(self) -> bool:
        """Load the diarization pipeline and embedding model. Returns True if successful."""
        if not PYANNOTE_AVAILABLE:
            logger.error("pyannote.audio not installed. Install with: pip install pyannote.audio")
            return False

        hf_token = _hf_token()
        if not hf_token:
            logger.error("HuggingFace token not found. Set HF_TOKEN environment variable.")
            return False

        try:
            device = torch.device("cuda" if self._device == "cuda" and torch.cuda.is_available() else "cpu")

            logger.info("Loading pyannote speaker-diarization pipeline...")
            self._pipeline = Pipeline.from_pretrained(PIPELINE_ID, token=hf_token)
            self._pipeline.to(device)

            logger.info("Loading embedding model for speaker fingerprinting...")
            embedding_model = Model.from_pretrained(EMBEDDING_MODEL_ID, token=hf_token)
            embedding_model.to(device)
            self._embedding_inference = Inference(embedding_model, window="whole")
        except Exception as e:
            logger.error(f"Failed to load diarization models: {e}", exc_info=True)
            self._pipeline = None
            self._embedding_inference = None
            self._loaded = False
            return False

        self._loaded = True
        logger.info(f"Diarization models loaded on {device.type}")
        return True

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise ModelsNotLoaded()

    @staticmethod
    def _as_input(audio: np.ndarray, sample_rate: int) -> dict:
        waveform = torch.from_numpy(np.ascontiguousarray(audio, dtype=np.float32)).unsqueeze(0)
        return {"waveform": waveform, "sample_rate": sample_rate}

    def _extract_embedding(self, audio: np.ndarray, sample_rate: int) -> Optional[np.ndarray]:
        """Unit-length voice embedding for the audio, or None if it is too short or silent."""
        if len(audio) < sample_rate * MIN_EMBEDDING_SECONDS:
            return None

        embedding = self._embedding_inference(self._as_input(audio, sample_rate))
        if isinstance(embedding, torch.Tensor):
            embedding = embedding.cpu().numpy()
        embedding = np.asarray(embedding, dtype=np.float32).flatten()

        norm = np.linalg.norm(embedding)
        if not np.isfinite(norm) or norm == 0:
            return None
        return embedding / norm

    def _match_known(self, embedding: np.ndarray) -> Optional[str]:
        """Best enrolled profile above the similarity threshold."""
        best_match = None
        best_similarity = self._similarity_threshold
        for speaker_id, known in self._known_speakers.items():
            if known.shape != embedding.shape:
                continue
            similarity = float(np.dot(embedding, known))
            if similarity > best_similarity:
                best_similarity = similarity
                best_match = speaker_id
        return best_match

    def _resolve_labels(self, embeddings: Dict[str, np.ndarray]) -> Tuple[Dict[str, str], Dict[str, np.ndarray]]:
        """Map engine labels to profile ids (or "Speaker N") and build the speaker database."""
        mapping: Dict[str, str] = {}
        database: Dict[str, np.ndarray] = {}
        counter = 0
        for label, embedding in embeddings.items():
            resolved = self._match_known(embedding)
            if resolved is None:
                counter += 1
                resolved = f"Speaker {counter}"
            mapping[label] = resolved
            database.setdefault(resolved, embedding)
        return mapping, database

    def diarize_offline(self, audio: np.ndarray, sample_rate: int = 16000) -> DiarizationResult:
        self._require_loaded()

        output = self._pipeline(self._as_input(audio, sample_rate))
        # Newer pyannote returns DiarizeOutput - extract the Annotation
        annotation = getattr(output, 'speaker_diarization', output)
        tracks = list(annotation.itertracks(yield_label=True))
        logger.debug(f"Offline diarization: {len(tracks)} turns, labels={annotation.labels()}")

        embeddings: Dict[str, np.ndarray] = {}
        for label in annotation.labels():
            pieces = []
            for turn, _, speaker in tracks:
                if speaker != label:
                    continue
                start = int(turn.start * sample_rate)
                end = min(int(turn.end * sample_rate), len(audio))
                if end > start:
                    pieces.append(audio[start:end])
            if not pieces:
                continue
            embedding = self._extract_embedding(np.concatenate(pieces), sample_rate)
            if embedding is not None:
                embeddings[label] = embedding

        mapping, database = self._resolve_labels(embeddings)
        segments = [
            SpeakerSegment(speaker_id=mapping[speaker], start=float(turn.start), end=float(turn.end))
            for turn, _, speaker in tracks
            if speaker in mapping
        ]
        segments.sort(key=lambda s: s.start)
        return DiarizationResult(segments=segments, speaker_database=database)

    def diarize_streaming(self, audio: np.ndarray, sample_rate: int = 16000) -> DiarizationResult:
        self._require_loaded()

        window = max(1, int(self._window_seconds * sample_rate))
        centroids: Dict[str, np.ndarray] = {}
        counts: Dict[str, int] = {}
        segments: List[SpeakerSegment] = []

        for start in range(0, len(audio), window):
            chunk = audio[start:start + window]
            if len(chunk) < sample_rate * MIN_EMBEDDING_SECONDS:
                continue
            if float(np.sqrt(np.mean(np.square(chunk)))) < SILENCE_RMS:
                continue

            embedding = self._extract_embedding(chunk, sample_rate)
            if embedding is None:
                continue

            label = self._assign_window(embedding, centroids, counts)
            t0 = start / sample_rate
            t1 = (start + len(chunk)) / sample_rate
            if segments and segments[-1].speaker_id == label and abs(segments[-1].end - t0) < 1e-6:
                segments[-1].end = t1
            else:
                segments.append(SpeakerSegment(speaker_id=label, start=t0, end=t1))

        mapping, database = self._resolve_labels(centroids)
        for segment in segments:
            segment.speaker_id = mapping[segment.speaker_id]
        logger.debug(f"Streaming diarization: {len(segments)} segments, speakers={list(database)}")
        return DiarizationResult(segments=segments, speaker_database=database)

    def _assign_window(self, embedding: np.ndarray, centroids: Dict[str, np.ndarray], counts: Dict[str, int]) -> str:
        """Attach a window to the closest cluster, or open a new one."""
        best_label = None
        best_similarity = self._similarity_threshold
        for label, centroid in centroids.items():
            similarity = float(np.dot(embedding, centroid))
            if similarity > best_similarity:
                best_similarity = similarity
                best_label = label

        if best_label is None:
            best_label = f"stream_{len(centroids)}"
            centroids[best_label] = embedding
            counts[best_label] = 1
            return best_label

        # Running average: new_avg = (old_avg * count + new_emb) / (count + 1)
        count = counts[best_label]
        updated = (centroids[best_label] * count + embedding) / (count + 1)
        centroids[best_label] = updated / np.linalg.norm(updated)
        counts[best_label] = count + 1
        return best_label
