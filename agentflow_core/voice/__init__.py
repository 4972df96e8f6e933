"""Speech synthesis, server-side sequencing and client-side playback."""

from .playback import AudioOutput, AudioPart, PlaybackReassembler
from .sequencer import SpeechSequencer
from .synthesis import (
    AudioHandle,
    MockSpeechSynthesizer,
    RemoteSpeechSynthesizer,
    SpeechSynthesizer,
    SynthesisError,
)

__all__ = [
    "AudioHandle",
    "AudioOutput",
    "AudioPart",
    "MockSpeechSynthesizer",
    "PlaybackReassembler",
    "RemoteSpeechSynthesizer",
    "SpeechSequencer",
    "SpeechSynthesizer",
    "SynthesisError",
]
