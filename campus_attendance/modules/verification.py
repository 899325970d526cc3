"""
Verification Providers Module - Campus Attendance System

Each verification method proves a student's presence in its own way and
hands the session protocol a single decision. The four methods are a closed
set: every provider exposes ``verify(proof, context)`` and returns a
``VerificationResult``. Malformed evidence raises ``InvalidInput``.

Methods:
- qr: signed session payload read from the lecturer's QR code
- face: captured face embedding compared with the enrolled reference
- geo: device coordinates inside the course geofence
- nfc: card serial enrolled for the student
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import numpy as np

from campus_attendance.modules.errors import InvalidInput

METHOD_QR = 'qr'
METHOD_FACE = 'face'
METHOD_GEO = 'geo'
METHOD_NFC = 'nfc'
METHODS = (METHOD_QR, METHOD_FACE, METHOD_GEO, METHOD_NFC)

EARTH_RADIUS_METERS = 6371000.0


@dataclass
class VerificationContext:
    """What a provider may know about the submission it is checking."""
    session: Any
    student_id: int
    now: datetime


@dataclass
class VerificationResult:
    """Outcome of one provider check."""
    accepted: bool
    reason: str = ''
    audit_data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def accept(cls, **audit_data):
        return cls(True, '', audit_data)

    @classmethod
    def reject(cls, reason: str, **audit_data):
        return cls(False, reason, audit_data)


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters on a spherical earth."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)
    a = (math.sin(dphi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2)
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def cosine_similarity(reference: Sequence[float], probe: Sequence[float]) -> float:
    """Default face comparator: cosine similarity of two embeddings."""
    a = np.asarray(reference, dtype=float)
    b = np.asarray(probe, dtype=float)
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.dot(a, b) / norm)


def _is_finite_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def is_embedding(values) -> bool:
    """True for a non-empty list of finite numbers."""
    return (isinstance(values, (list, tuple)) and len(values) > 0 and
            all(_is_finite_number(v) for v in values))


def _require_mapping(proof) -> Dict[str, Any]:
    if not isinstance(proof, dict):
        raise InvalidInput('Verification data must be an object')
    return proof


def _require_number(proof: Dict[str, Any], *keys: str) -> float:
    for key in keys:
        if key in proof:
            value = proof[key]
            if isinstance(value, bool):
                break
            try:
                number = float(value)
            except (TypeError, ValueError):
                break
            if math.isfinite(number):
                return number
            break
    raise InvalidInput(f'Invalid location data: {keys[0]} must be a number')


class QRVerifier:
    """Accepts a signed session payload that names this session and has not expired."""

    method = METHOD_QR

    def __init__(self, qr_generator):
        self.qr_generator = qr_generator

    def verify(self, proof, context: VerificationContext) -> VerificationResult:
        if isinstance(proof, str):
            qr_data = proof
        else:
            qr_data = _require_mapping(proof).get('qr_data')

        payload = self.qr_generator.decode_session_payload(qr_data)

        if str(payload['sessionId']) != str(context.session.id):
            return VerificationResult.reject(
                'QR code belongs to a different attendance session',
                scannedSessionId=payload['sessionId']
            )

        if payload['expiry'] <= context.now:
            return VerificationResult.reject('QR code has expired')

        return VerificationResult.accept(
            courseId=payload['courseId'],
            sessionId=payload['sessionId'],
            scannedAt=context.now.isoformat()
        )


class FaceVerifier:
    """
    Compares a captured embedding with the student's enrolled reference.
    The comparator is pluggable; it must return a similarity where higher
    means more alike.
    """

    method = METHOD_FACE

    def __init__(self, reference_lookup: Callable[[int], Optional[Sequence[float]]],
                 threshold: float = 0.85,
                 comparator: Callable[[Sequence[float], Sequence[float]], float] = cosine_similarity):
        self.reference_lookup = reference_lookup
        self.threshold = threshold
        self.comparator = comparator

    def verify(self, proof, context: VerificationContext) -> VerificationResult:
        embedding = _require_mapping(proof).get('embedding')
        if not is_embedding(embedding):
            raise InvalidInput('Face data must include a non-empty embedding of finite numbers')

        reference = self.reference_lookup(context.student_id)
        if reference is None:
            return VerificationResult.reject('no reference face enrolled for this student')

        if len(reference) != len(embedding):
            raise InvalidInput(
                f'Face embedding has {len(embedding)} values, expected {len(reference)}'
            )

        similarity = float(self.comparator(reference, embedding))
        if not math.isfinite(similarity):
            return VerificationResult.reject('face did not match: similarity could not be computed')
        if similarity < self.threshold:
            return VerificationResult.reject(
                f'face did not match: similarity {similarity:.2f} < {self.threshold:.2f}',
                similarity=round(similarity, 4)
            )

        return VerificationResult.accept(
            similarity=round(similarity, 4),
            verifiedAt=context.now.isoformat()
        )


class GeoVerifier:
    """Accepts coordinates within the course geofence."""

    method = METHOD_GEO

    def __init__(self, location_lookup: Callable[[Any], Tuple[float, float, float]]):
        """
        Args:
            location_lookup: course_id -> (latitude, longitude, radius_meters)
        """
        self.location_lookup = location_lookup

    def verify(self, proof, context: VerificationContext) -> VerificationResult:
        proof = _require_mapping(proof)
        lat = _require_number(proof, 'lat', 'latitude')
        lng = _require_number(proof, 'lng', 'longitude')
        if not -90.0 <= lat <= 90.0 or not -180.0 <= lng <= 180.0:
            raise InvalidInput('Invalid location data: coordinates out of range')

        class_lat, class_lng, radius = self.location_lookup(context.session.course_id)
        distance = haversine_distance(lat, lng, class_lat, class_lng)
        audit = {
            'latitude': lat,
            'longitude': lng,
            'distance': round(distance, 1),
            'radius': radius
        }

        if distance > radius:
            return VerificationResult.reject(
                f'too far from class location: {distance:.0f}m > {radius:.0f}m', **audit
            )

        return VerificationResult.accept(**audit)


class NFCVerifier:
    """Accepts a card serial that is an active credential of the student."""

    method = METHOD_NFC

    def __init__(self, credential_lookup: Callable[[int, str], bool]):
        self.credential_lookup = credential_lookup

    def verify(self, proof, context: VerificationContext) -> VerificationResult:
        card_id = _require_mapping(proof).get('cardId')
        if not isinstance(card_id, str) or not card_id.strip():
            raise InvalidInput('NFC data must include a card serial number')
        card_id = card_id.strip()

        if not self.credential_lookup(context.student_id, card_id):
            return VerificationResult.reject(
                f'card {card_id} is not an enrolled credential for this student', cardId=card_id
            )

        return VerificationResult.accept(cardId=card_id, tappedAt=context.now.isoformat())


def build_verifiers(qr_generator, course_manager, student_manager,
                    face_threshold: float = 0.85, face_comparator=cosine_similarity):
    """Map every method name to its provider."""
    return {
        METHOD_QR: QRVerifier(qr_generator),
        METHOD_FACE: FaceVerifier(student_manager.get_face_reference,
                                  threshold=face_threshold, comparator=face_comparator),
        METHOD_GEO: GeoVerifier(course_manager.get_geofence),
        METHOD_NFC: NFCVerifier(student_manager.has_nfc_credential)
    }
