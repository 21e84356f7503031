from __future__ import annotations  # Re-export transcription public API

from .whisper import MultipartClient, Transcriber

__all__ = ["MultipartClient", "Transcriber"]
