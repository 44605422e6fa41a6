"""
Proof-of-purchase codec.

The QR code carries compact JSON:

    {"ticketId": "<32 hex>", "eventId": 42, "timestamp": 1767225600000}

`timestamp` is the issue time in epoch milliseconds. The payload is not
signed: anyone who knows a ticket id and its event id can produce a scan
that decodes. The verification gate only trusts what it finds in the
bookings table.
"""

import base64
import json
import time
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

import qrcode
from qrcode import constants

from ticketing.core.errors import MalformedProof

QR_BOX_SIZE = 10
QR_BORDER = 1


@dataclass(frozen=True)
class ProofPayload:
    ticket_id: str
    event_id: int
    issued_at_ms: Optional[int]


@dataclass(frozen=True)
class ProofOfPurchase:
    payload: str
    image: str  # data:image/png;base64,...


def encode_payload(ticket_id: str, event_id: int, issued_at_ms: Optional[int] = None) -> str:
    if issued_at_ms is None:
        issued_at_ms = int(time.time() * 1000)
    data = {"ticketId": ticket_id, "eventId": event_id, "timestamp": issued_at_ms}
    return json.dumps(data, separators=(",", ":"))


def render_qr(payload: str) -> str:
    """Render the payload as a PNG QR code data URL."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=constants.ERROR_CORRECT_M,
        box_size=QR_BOX_SIZE,
        border=QR_BORDER,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffered = BytesIO()
    img.save(buffered)
    encoded = base64.b64encode(buffered.getvalue()).decode("utf-8")
    return f"data:image/png;base64,{encoded}"


def encode(ticket_id: str, event_id: int, *, issued_at_ms: Optional[int] = None) -> ProofOfPurchase:
    payload = encode_payload(ticket_id, event_id, issued_at_ms)
    return ProofOfPurchase(payload=payload, image=render_qr(payload))


def decode(raw_scan: str) -> ProofPayload:
    """Parse scanned QR text. Raises MalformedProof on anything unusable."""
    try:
        data = json.loads(raw_scan)
    except (TypeError, ValueError):
        raise MalformedProof()

    if not isinstance(data, dict):
        raise MalformedProof()

    ticket_id = data.get("ticketId")
    event_id = data.get("eventId")
    if not isinstance(ticket_id, str) or not ticket_id.strip():
        raise MalformedProof("Invalid QR code format")
    if event_id is None or isinstance(event_id, bool) or event_id == "":
        raise MalformedProof("Invalid QR code format")

    # 3.0 is event 3; 3.7, NaN and overflowed floats are not event ids
    if isinstance(event_id, float) and not event_id.is_integer():
        raise MalformedProof("Invalid QR code format")
    try:
        event_id = int(event_id)
    except (TypeError, ValueError, OverflowError):
        raise MalformedProof("Invalid QR code format")

    issued_at = data.get("timestamp")
    if not isinstance(issued_at, int) or isinstance(issued_at, bool):
        issued_at = None

    return ProofPayload(ticket_id=ticket_id.strip(), event_id=event_id, issued_at_ms=issued_at)
