"""
Services module - audio pipeline, transport, sequencing and recording control.
"""

from .history import TranslationHistory
from .playback_queue import PlaybackQueue
from .recorder import RecordingController

__all__ = ["PlaybackQueue", "RecordingController", "TranslationHistory"]
