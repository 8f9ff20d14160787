"""
Speaker enrollment utility.
Records audio from the microphone (or reads a file) and stores a voice fingerprint.

Usage:
    python -m voxkey.speakers.enroll_speaker "Callum"
    python -m voxkey.speakers.enroll_speaker "Sash" --file "sash_sample.wav" --group "Design"
    python -m voxkey.speakers.enroll_speaker --list
    python -m voxkey.speakers.enroll_speaker --re-enroll <profile-id>
    python -m voxkey.speakers.enroll_speaker --remove <profile-id>
"""

import argparse
import sys
import time
from pathlib import Path

import numpy as np
from dotenv import load_dotenv

from ..audio.normalizer import AudioBuffer, AudioNormalizer
from ..errors import EnrollmentError, VoxkeyError
from ..logger import setup_logging
from ..transcription import create_diarization_engine
from ..utils import ConfigManager
from .enrollment import MIN_ENROLLMENT_SECONDS, SpeakerEnrollmentManager
from .profiles import SpeakerProfileStore

load_dotenv(Path(__file__).parent.parent.parent.parent / ".env")


def record_sample(duration: float = 10.0, sample_rate: int = 16000) -> AudioBuffer:
    """Record a fixed-length sample from the default microphone."""
    import sounddevice as sd

    print(f"\nRecording for {duration} seconds...")
    print("Please speak clearly into your microphone.")
    for count in ("3...", "2...", "1..."):
        print(count)
        time.sleep(1)
    print("Recording!")

    audio = sd.rec(int(duration * sample_rate), samplerate=sample_rate, channels=1, dtype='int16')
    sd.wait()
    print("Recording complete.")
    return AudioBuffer(samples=audio, sample_rate=sample_rate, channels=1)


def load_sample(args, normalizer: AudioNormalizer) -> np.ndarray:
    if args.file:
        print(f"Loading audio from {args.file}...")
        return normalizer.normalize_file(args.file).samples
    return normalizer.normalize(record_sample(args.duration)).samples


def print_profiles(manager: SpeakerEnrollmentManager) -> None:
    groups = manager.grouped_profiles()
    if not groups:
        print("No speakers enrolled yet.")
        return
    for label, profiles in groups:
        print(f"{label}:")
        for profile in profiles:
            role = f" ({profile.role})" if profile.role else ""
            print(f"  [{profile.initials}] {profile.name}{role}  {profile.id}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Enroll a speaker for voice recognition")
    parser.add_argument("name", nargs="?", help="Speaker name (e.g., 'Callum')")
    parser.add_argument("--file", "-f", help="Audio file to use instead of recording")
    parser.add_argument("--duration", "-d", type=float, default=10.0,
                        help="Recording duration in seconds (default: 10)")
    parser.add_argument("--role", default="", help="Role shown next to the name")
    parser.add_argument("--group", default="", help="Group the speaker belongs to")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--list", "-l", action="store_true", help="List enrolled speakers")
    parser.add_argument("--remove", "-r", metavar="ID", help="Remove the speaker with this id")
    parser.add_argument("--re-enroll", metavar="ID", help="Record a new sample for an existing speaker")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    config = ConfigManager(config_path=args.config)
    setup_logging(print_to_terminal=bool(config.get_config_value('misc', 'print_to_terminal')))

    store = SpeakerProfileStore(config.profiles_file())
    try:
        store.load()
    except VoxkeyError as e:
        print(f"Error: {e}")
        return 1

    if args.list:
        print(f"Speaker profiles ({config.profiles_file()}):")
        print_profiles(SpeakerEnrollmentManager(None, store))
        return 0

    if args.remove:
        if store.remove(args.remove):
            print(f"Removed speaker {args.remove}")
        else:
            print(f"No speaker with id {args.remove}")
        return 0

    if not args.name and not args.re_enroll:
        print("A speaker name is required (or use --list, --remove, --re-enroll).")
        return 1

    if not args.file and args.duration < MIN_ENROLLMENT_SECONDS:
        print(f"Duration must be at least {MIN_ENROLLMENT_SECONDS:.0f} seconds.")
        return 1

    diarizer = create_diarization_engine(config)
    print("Loading speaker models...")
    if not diarizer.load():
        print("Failed to load diarization model. Check HF_TOKEN in .env.")
        return 1

    manager = SpeakerEnrollmentManager(diarizer, store)
    normalizer = AudioNormalizer()
    try:
        samples = load_sample(args, normalizer)
        if args.re_enroll:
            profile = manager.re_enroll(args.re_enroll, samples)
            print(f"\nUpdated voice fingerprint for '{profile.name}'.")
        else:
            profile = manager.enroll(args.name, samples, role=args.role, group_name=args.group)
            print(f"\nSuccessfully enrolled '{profile.name}' ({profile.id}).")
    except EnrollmentError as e:
        print(f"\nEnrollment failed: {e}")
        return 1
    except VoxkeyError as e:
        print(f"\nError: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
