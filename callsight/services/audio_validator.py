import os
from dataclasses import dataclass, field
from typing import List, Optional

MIN_AUDIO_BYTES = 100
HEADER_BYTES = 32
ALLOWED_EXTENSIONS = {"wav", "mp3", "flac", "m4a", "aac", "ogg", "wma"}


@dataclass
class AudioVerdict:
    """
    Result of sniffing a downloaded recording.

    Attributes:
        valid: Whether the bytes may be sent for transcription.
        detected_type: Container name ("wav", "mp3", ...) or None.
        reason: Human readable explanation, used in failure messages.
        confident: False when the pass rests on the file extension alone.
        header_hex: Hex dump of the first bytes, for diagnostics.
    """
    valid: bool
    detected_type: Optional[str]
    reason: str
    confident: bool = False
    header_hex: str = ""
    header_text: str = ""
    recommendations: List[str] = field(default_factory=list)


def _printable(header: bytes) -> str:
    return "".join(chr(b) if 32 <= b < 127 else "." for b in header)


def detect_signature(header: bytes) -> Optional[str]:
    if len(header) >= 12 and header[0:4] == b"RIFF" and header[8:12] == b"WAVE":
        return "wav"
    if header[0:3] == b"ID3":
        return "mp3"
    # MPEG audio frame sync: 11 set bits
    if len(header) >= 2 and header[0] == 0xFF and (header[1] & 0xE0) == 0xE0:
        return "mp3"
    if header[0:4] == b"fLaC":
        return "flac"
    if header[0:4] == b"OggS":
        return "ogg"
    if len(header) >= 8 and header[4:8] == b"ftyp":
        return "m4a"
    return None


def validate_audio(data: bytes, filename: str = "") -> AudioVerdict:
    """
    Decides whether `data` looks like an audio container.

    Signatures are checked first; an allow-listed extension on `filename` gives a
    low-confidence pass when no signature matches. Anything under 100 bytes is
    rejected outright.
    """
    header = data[:HEADER_BYTES]
    header_hex = header.hex()
    header_text = _printable(header)

    if len(data) < MIN_AUDIO_BYTES:
        return AudioVerdict(
            valid=False,
            detected_type=None,
            reason=f"File too small ({len(data)} bytes)",
            header_hex=header_hex,
            header_text=header_text,
            recommendations=["The recording is empty or truncated; check the source file on the server."],
        )

    detected = detect_signature(header)
    if detected:
        return AudioVerdict(
            valid=True,
            detected_type=detected,
            reason=f"Detected {detected.upper()} signature",
            confident=True,
            header_hex=header_hex,
            header_text=header_text,
        )

    extension = os.path.splitext(filename)[1].lstrip(".").lower()
    if extension in ALLOWED_EXTENSIONS:
        return AudioVerdict(
            valid=True,
            detected_type=extension,
            reason=f"No known signature; accepted on .{extension} extension",
            confident=False,
            header_hex=header_hex,
            header_text=header_text,
            recommendations=["Header did not match a known container; transcription may still fail."],
        )

    recommendations = ["Check whether the server returned an error page instead of audio."]
    if header_text.lstrip(".").startswith(("<", "{")):
        recommendations.append("The file starts like HTML/JSON text, not audio.")
    return AudioVerdict(
        valid=False,
        detected_type=None,
        reason=f"Unrecognized format. Header: {header[:16].hex()}",
        header_hex=header_hex,
        header_text=header_text,
        recommendations=recommendations,
    )
