"""Shutdown monitor protocol — two plain text lines in, one CRLF line out.

    client → server:  <key>\\n
    client → server:  <command>\\n
    server → client:  Stopped\\r\\n | OK\\r\\n   (nothing for anything else)
"""

import hmac
import secrets
import string
import time

CMD_STOP = "stop"
CMD_STATUS = "status"

STOPPED_REPLY = b"Stopped\r\n"
STATUS_REPLY = b"OK\r\n"

_B36_DIGITS = string.digits + string.ascii_lowercase


# ── Encode ────────────────────────────────────────────────────────────

def encode_request(key: str, command: str) -> bytes:
    """Client → Server key and command lines."""
    return f"{key}\n{command}\n".encode("utf-8")


def reply_for(command: str | None) -> bytes | None:
    """Reply bytes for a command, or None when the command gets no reply."""
    if command == CMD_STOP:
        return STOPPED_REPLY
    if command == CMD_STATUS:
        return STATUS_REPLY
    return None


# ── Decode ────────────────────────────────────────────────────────────

def decode_line(line: bytes) -> str | None:
    """Strip the line terminator. Returns None at end of stream."""
    if not line:
        return None
    text = line.decode("utf-8", errors="replace")
    if text.endswith("\n"):
        text = text[:-1]
    if text.endswith("\r"):
        text = text[:-1]
    return text


# ── Keys ──────────────────────────────────────────────────────────────

def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    value = abs(value)
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_B36_DIGITS[rem])
    return sign + "".join(reversed(digits))


def generate_key(salt: object = None) -> str:
    """Random shared secret: 63 random bits plus a time and identity salt, in base 36."""
    value = secrets.randbits(63) + id(salt) + int(time.time() * 1000)
    return to_base36(value)


def keys_match(expected: str, candidate: str | None) -> bool:
    """Constant-time key check. A missing line never matches."""
    if candidate is None or not expected:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8"))
