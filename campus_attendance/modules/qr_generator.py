"""
QR Code Generator Module - Campus Attendance System

Generates the QR code a lecturer displays for an attendance session and
decodes the payload a student's scanner reads back.

The payload is a JSON object:
    {"courseId", "sessionId", "expiry", "timestamp", "signature"}
where ``signature`` is an HMAC-SHA256 over the canonical JSON of the other
fields (sorted keys), keyed by the configured QR signing key.
"""

import base64
import hashlib
import hmac
import io
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict

import qrcode
from PIL import Image

from campus_attendance.modules.errors import InvalidInput
from campus_attendance.modules.session_manager import parse_instant, utc_now

PAYLOAD_FIELDS = ('courseId', 'sessionId', 'expiry', 'timestamp')


class QRGenerator:
    """
    QR code generator for attendance sessions.
    Handles payload signing, image rendering and payload validation.
    """

    def __init__(self, signing_key: str, clock: Callable[[], datetime] = None,
                 box_size: int = 10, border: int = 4):
        """
        Initialize the QR code generator.

        Args:
            signing_key (str): Secret used to sign session payloads
            clock: Callable returning the current aware datetime
            box_size (int): Size of each box in pixels
            border (int): Size of the border in boxes (minimum is 4)
        """
        self.signing_key = signing_key.encode('utf-8')
        self.clock = clock or utc_now
        self.logger = logging.getLogger(__name__)

        self.default_settings = {
            'version': 1,
            'error_correction': qrcode.constants.ERROR_CORRECT_M,  # ~15% error correction
            'box_size': box_size,
            'border': max(border, 4),
            'fill_color': 'black',
            'back_color': 'white'
        }

    def _sign(self, fields: Dict[str, Any]) -> str:
        canonical = json.dumps(fields, sort_keys=True, separators=(',', ':'))
        return hmac.new(self.signing_key, canonical.encode('utf-8'), hashlib.sha256).hexdigest()

    def build_session_payload(self, session) -> str:
        """
        Build the signed payload string for a session.

        Args:
            session: AttendanceSession

        Returns:
            str: JSON payload embedded in the QR code
        """
        fields = {
            'courseId': session.course_id,
            'sessionId': session.id,
            'expiry': session.expiry_time.isoformat(),
            'timestamp': self.clock().isoformat()
        }
        fields['signature'] = self._sign(fields)
        return json.dumps(fields, sort_keys=True)

    def generate_session_qr_code(self, session) -> Dict[str, Any]:
        """
        Render the QR code for a session.

        Returns:
            Dict[str, Any]: payload, base64 PNG image and image size
        """
        qr_data = self.build_session_payload(session)
        settings = self.default_settings

        qr = qrcode.QRCode(
            version=settings['version'],
            error_correction=settings['error_correction'],
            box_size=settings['box_size'],
            border=settings['border']
        )
        qr.add_data(qr_data)
        qr.make(fit=True)

        img = qr.make_image(
            fill_color=settings['fill_color'],
            back_color=settings['back_color']
        )
        if not isinstance(img, Image.Image):
            img = img.get_image()

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')

        self.logger.info(f"QR code generated for attendance session {session.id}")
        return {
            'session_id': session.id,
            'qr_data': qr_data,
            'image_base64': base64.b64encode(buffer.getvalue()).decode('utf-8'),
            'image_size': img.size,
            'expiry': session.expiry_time.isoformat()
        }

    def decode_session_payload(self, qr_data) -> Dict[str, Any]:
        """
        Validate and decode a scanned session payload.

        Args:
            qr_data (str): Raw text read from the QR code

        Returns:
            Dict[str, Any]: Payload fields, with ``expiry`` parsed to a datetime

        Raises:
            InvalidInput: malformed JSON, missing fields, bad signature or expiry
        """
        if not isinstance(qr_data, str) or not qr_data.strip():
            raise InvalidInput('No QR code data provided')

        try:
            decoded = json.loads(qr_data)
        except json.JSONDecodeError:
            raise InvalidInput('Invalid QR code format')

        if not isinstance(decoded, dict):
            raise InvalidInput('Invalid QR code format')

        for field in PAYLOAD_FIELDS + ('signature',):
            if field not in decoded:
                raise InvalidInput(f'Invalid QR code: missing field {field}')

        fields = {key: decoded[key] for key in PAYLOAD_FIELDS}
        signature = decoded['signature']
        valid = (isinstance(signature, str) and signature.isascii() and
                 hmac.compare_digest(signature, self._sign(fields)))
        if not valid:
            self.logger.warning(f"QR payload with invalid signature for session {fields['sessionId']}")
            raise InvalidInput('Invalid QR code: signature mismatch')

        try:
            fields['expiry'] = parse_instant(fields['expiry'])
        except (TypeError, ValueError):
            raise InvalidInput('Invalid QR code: unreadable expiry')

        return fields

    def is_expired(self, payload: Dict[str, Any], now: datetime = None) -> bool:
        """Client-side fast-fail check on a decoded payload."""
        return payload['expiry'] <= (now or self.clock())
