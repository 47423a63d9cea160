"""QR code rendering for participant identifiers."""
from __future__ import annotations

import base64
import secrets
import string
from io import BytesIO

import qrcode

from core.errors import CheckpointError

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8


def generate_participant_code() -> str:
    """Random 8-character A-Z0-9 code. Not guessable from registration order."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def render_qr_png(data: str) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = BytesIO()
    img.save(buf)
    return buf.getvalue()


def render_qr_data_url(data: str) -> str:
    """PNG data URL for ``data``. A participant without a usable code is not created."""
    try:
        png = render_qr_png(data)
    except Exception as e:
        raise CheckpointError(f"Failed to generate QR code: {e}", "QR_RENDER_FAILED") from e
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


def data_url_to_png(data_url: str) -> bytes:
    return base64.b64decode(data_url.split(",", 1)[1])
