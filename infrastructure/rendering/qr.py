"""QR rendering for token credentials."""

from __future__ import annotations

import base64
import io

import qrcode


def make_qr_png(data: str, box_size: int = 8, border: int = 2) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def qr_data_url(data: str) -> str:
    """PNG data URL the dashboard can drop straight into an <img> tag."""
    encoded = base64.b64encode(make_qr_png(data)).decode("ascii")
    return f"data:image/png;base64,{encoded}"
