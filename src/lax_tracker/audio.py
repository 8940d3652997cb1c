"""Audible cues for the game clock and training drills.

Playback itself belongs to the host platform. This module decides *what* a cue
sounds like: a user-supplied clip when one is configured and decodes, otherwise
a synthesized tone.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Mapping, Protocol

from .config import CUE_TONES, CUSTOM_SOUND_NAMES

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ToneSpec:
    start_hz: float
    end_hz: float
    seconds: float
    gain: float

    @property
    def is_sweep(self) -> bool:
        return self.start_hz != self.end_hz


@dataclass(frozen=True, slots=True)
class ResolvedCue:
    name: str
    tone: ToneSpec | None = None
    clip: bytes | None = None


class CuePlayer(Protocol):
    def play(self, cue: str) -> None: ...

    def speak(self, text: str) -> None: ...

    def cancel_speech(self) -> None: ...


def tone_for(cue: str) -> ToneSpec:
    try:
        start_hz, end_hz, seconds, gain = CUE_TONES[cue]
    except KeyError:
        raise ValueError(f"Unknown cue: {cue}") from None
    return ToneSpec(start_hz=start_hz, end_hz=end_hz, seconds=seconds, gain=gain)


def decode_sound_clip(data_url: str) -> bytes:
    """Decode a ``data:audio/...;base64,`` URL (or bare base64) into raw bytes."""
    payload = data_url.split(",", 1)[1] if "," in data_url else data_url
    if not payload.strip():
        raise ValueError("Sound clip is empty.")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Sound clip is not valid base64: {exc}") from exc


class SoundBoard:
    def __init__(self, sound_effects: Mapping[str, str] | None = None) -> None:
        self.sound_effects = dict(sound_effects or {})

    def resolve(self, cue: str) -> ResolvedCue:
        # Countdown beeps and the buzzer are always synthesized.
        data = self.sound_effects.get(cue) if cue in CUSTOM_SOUND_NAMES else None
        if data:
            try:
                return ResolvedCue(name=cue, clip=decode_sound_clip(data))
            except ValueError as exc:
                logger.error("Error processing custom sound %r, falling back to tone: %s", cue, exc)
        return ResolvedCue(name=cue, tone=tone_for(cue))


class LoggingCuePlayer:
    """Default player for headless hosts: cues are logged instead of played."""

    def __init__(self, sound_board: SoundBoard | None = None) -> None:
        self.sound_board = sound_board or SoundBoard()

    def play(self, cue: str) -> None:
        resolved = self.sound_board.resolve(cue)
        if resolved.clip is not None:
            logger.info("cue %s: custom clip (%d bytes)", cue, len(resolved.clip))
        else:
            logger.info("cue %s: tone %s", cue, resolved.tone)

    def speak(self, text: str) -> None:
        logger.info("speak: %s", text)

    def cancel_speech(self) -> None:
        logger.debug("speech cancelled")
