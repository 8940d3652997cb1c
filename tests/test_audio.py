import base64

import pytest

from lax_tracker.audio import SoundBoard, decode_sound_clip, tone_for


def test_tone_table() -> None:
    whistle = tone_for("whistle")
    assert (whistle.start_hz, whistle.end_hz) == (3000.0, 1500.0)
    assert whistle.is_sweep
    buzzer = tone_for("buzzer")
    assert buzzer.seconds == 0.8
    assert buzzer.gain == 0.5
    with pytest.raises(ValueError):
        tone_for("airhorn")


def test_custom_clip_replaces_tone() -> None:
    data = "data:audio/wav;base64," + base64.b64encode(b"RIFF").decode()
    board = SoundBoard({"whistle": data})
    resolved = board.resolve("whistle")
    assert resolved.clip == b"RIFF"
    assert resolved.tone is None


def test_countdown_and_buzzer_are_never_customized() -> None:
    data = "data:audio/wav;base64," + base64.b64encode(b"RIFF").decode()
    board = SoundBoard({"countdown": data, "buzzer": data})
    assert board.resolve("countdown").clip is None
    assert board.resolve("buzzer").tone == tone_for("buzzer")


def test_undecodable_clip_falls_back_to_tone() -> None:
    board = SoundBoard({"set": "data:audio/wav;base64,@@not-base64@@"})
    resolved = board.resolve("set")
    assert resolved.clip is None
    assert resolved.tone == tone_for("set")


def test_decode_rejects_empty_payload() -> None:
    with pytest.raises(ValueError):
        decode_sound_clip("data:audio/wav;base64,")
