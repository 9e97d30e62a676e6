from callsight.services.audio_validator import validate_audio

from conftest import wav_bytes


def test_wav_signature():
    verdict = validate_audio(wav_bytes(), "call.wav")
    assert verdict.valid
    assert verdict.detected_type == "wav"
    assert verdict.confident


def test_id3_mp3_signature():
    verdict = validate_audio(b"ID3\x04\x00" + b"\x00" * 500, "call.mp3")
    assert verdict.valid
    assert verdict.detected_type == "mp3"


def test_mpeg_frame_sync_without_id3():
    verdict = validate_audio(b"\xff\xfb\x90\x64" + b"\x00" * 500, "")
    assert verdict.detected_type == "mp3"


def test_other_containers():
    assert validate_audio(b"fLaC" + b"\x00" * 200).detected_type == "flac"
    assert validate_audio(b"OggS" + b"\x00" * 200).detected_type == "ogg"
    assert validate_audio(b"\x00\x00\x00\x20ftypM4A " + b"\x00" * 200).detected_type == "m4a"


def test_tiny_buffer_is_invalid_even_with_signature():
    verdict = validate_audio(wav_bytes()[:50], "call.wav")
    assert not verdict.valid
    assert "too small" in verdict.reason


def test_unknown_bytes_with_audio_extension_pass_with_low_confidence():
    verdict = validate_audio(b"\x01\x02\x03" * 100, "call.wav")
    assert verdict.valid
    assert not verdict.confident
    assert verdict.detected_type == "wav"


def test_unknown_bytes_without_audio_extension_fail_with_header():
    data = b"<html><body>Not found</body></html>" + b" " * 200
    verdict = validate_audio(data, "download")
    assert not verdict.valid
    assert verdict.reason.startswith("Unrecognized format. Header: ")
    assert data[:16].hex() in verdict.reason
    assert verdict.header_text.startswith("<html>")
    assert any("HTML" in r for r in verdict.recommendations)
