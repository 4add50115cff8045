# backend/studio_booking/services/qr_token_service.py
"""
QR check-in tokens.

Each booking has at most one short display code. The code stays valid
until ``settings.qr_token_ttl_hours`` after the session starts.
"""

from datetime import datetime, timedelta
import secrets
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import BookingNotFoundException, NotFoundException, QrTokenExpiredException
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.booking import QrToken
from ..repositories.booking_repository import BookingRepository
from ..repositories.factory import RepositoryFactory
from .base import BaseService

# No 0/O, 1/I confusion when read aloud or typed at the front desk
TOKEN_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"


def generate_token(length: Optional[int] = None) -> str:
    size = length or settings.qr_token_length
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(size))


def token_expiry(session_start: datetime) -> datetime:
    return ensure_utc(session_start) + timedelta(hours=settings.qr_token_ttl_hours)


class QrTokenService(BaseService):
    def __init__(self, db: Session, booking_repository: Optional[BookingRepository] = None):
        super().__init__(db)
        self.booking_repository = (
            booking_repository or RepositoryFactory.create_booking_repository(db)
        )

    @BaseService.measure_operation("issue_qr_token")
    def issue(self, *, booking_id: str, session_start: datetime) -> QrToken:
        """Mint (or replace) the booking's token."""
        with self.transaction():
            qr = self.booking_repository.upsert_qr_token(
                booking_id=booking_id,
                token=generate_token(),
                expires_at=token_expiry(session_start),
            )
        return qr

    def get_for_booking(self, booking_id: str) -> QrToken:
        qr = self.booking_repository.get_qr_token_for_booking(booking_id)
        if qr is None:
            raise BookingNotFoundException(booking_id)
        return qr

    def resolve(self, token: str, *, now: Optional[datetime] = None) -> QrToken:
        """
        Look up a scanned token.

        Raises:
            NotFoundException: unknown token
            QrTokenExpiredException: token past its expiry
        """
        normalized = token.strip().upper()
        qr = self.booking_repository.find_qr_token(normalized)
        if qr is None:
            raise NotFoundException(
                "QR code not recognised", code="QR_TOKEN_NOT_FOUND", details={"token": normalized}
            )
        if ensure_utc(qr.expires_at) < (now or utc_now()):
            raise QrTokenExpiredException(normalized)
        return qr
