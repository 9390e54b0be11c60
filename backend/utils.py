import base64
import secrets
import uuid
from datetime import datetime, timezone
from io import BytesIO

import qrcode

# No 0/O or 1/I, so codes survive being read aloud or copied by hand.
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_CODE_LENGTH = 6
ANONYMOUS_VOTER = "Anonymous"
DEFAULT_ROLE = "General"


def generate_uuid() -> str:
    return str(uuid.uuid4())


def generate_room_code() -> str:
    """Generates a 6-character room code from the unambiguous alphabet."""
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def get_utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_name(value: str) -> str:
    """Comparison key for role and candidate names: trimmed and case-folded."""
    return value.strip().casefold()


def sanitize_names(values) -> list:
    """Trim, drop empties, and dedupe case-insensitively keeping first-seen order."""
    seen = set()
    cleaned = []
    for value in values or []:
        if not isinstance(value, str):
            continue
        trimmed = value.strip()
        if not trimmed:
            continue
        key = normalize_name(trimmed)
        if key in seen:
            continue
        seen.add(key)
        cleaned.append(trimmed)
    return cleaned


def normalize_voter_name(value) -> str:
    trimmed = value.strip() if isinstance(value, str) else ""
    return trimmed or ANONYMOUS_VOTER


def generate_qr_code_base64(data: str) -> str:
    """Generates a QR code and returns it as a base64 encoded string."""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffered = BytesIO()
    img.save(buffered, format="PNG")
    return base64.b64encode(buffered.getvalue()).decode("utf-8")
