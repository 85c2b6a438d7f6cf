"""
Audio module - capture, chunking, encoding, metering and playback.
"""

from .capture import BaseAudioCapture, SoundDeviceCapture, classify_capture_error
from .chunker import AudioChunker
from .encoder import SampleEncoder
from .level_meter import AudioLevelMeter
from .playback import BasePlayback, SoundDevicePlayback, decode_audio

__all__ = [
    "AudioChunker",
    "AudioLevelMeter",
    "BaseAudioCapture",
    "BasePlayback",
    "SampleEncoder",
    "SoundDeviceCapture",
    "SoundDevicePlayback",
    "classify_capture_error",
    "decode_audio",
]
