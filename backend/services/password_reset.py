"""OTP-driven password reset.

The flow moves through ``NoChallenge -> Requested -> Verified -> Completed``:

1. ``request_reset`` stores a fresh challenge under ``reset_otp_<email>`` and
   mails the code. A new request overwrites any earlier challenge and drops
   any verified marker.
2. ``verify_otp`` checks the code and sets ``reset_verified_<email>``.
3. ``commit_password`` requires that marker, stores the new hash and deletes
   both keys.

The service itself is stateless; everything lives in the injected
``EphemeralStateStore`` and expires with its TTL. Expected failures come back
as ``ServiceResult`` values, never as exceptions.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
import logging

from core.config import settings
from core.errors import ErrorKind, ServiceResult
from core.security import get_password_hash
from services.credential_store import CredentialStore
from services.otp import challenge_key, generate_otp, normalize_email, otp_matches, verified_key
from services.state_store import EphemeralStateStore
from utils.email import NotificationSender
from utils.timing import timeit

logger = logging.getLogger(__name__)

MSG_OTP_SENT = "OTP sent to your email."
MSG_USER_NOT_FOUND = "User not found."
MSG_INVALID_OTP = "Invalid or expired OTP."
MSG_OTP_VERIFIED = "OTP verified. You may now reset your password."
MSG_NOT_VERIFIED = "OTP not verified or expired."
MSG_RESET_DONE = "Password reset successful."
MSG_INTERNAL = "Internal server error"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ResetChallenge:
    email: str
    otp: str
    issued_at: datetime
    expires_at: datetime
    verified: bool = False

    @classmethod
    def issue(cls, email: str, otp: str, now: datetime, ttl_seconds: int) -> "ResetChallenge":
        return cls(email=email, otp=otp, issued_at=now, expires_at=now + timedelta(seconds=ttl_seconds))

    def remaining_seconds(self, now: datetime) -> float:
        return (self.expires_at - now).total_seconds()

    def is_expired(self, now: datetime) -> bool:
        return self.remaining_seconds(now) <= 0

    def as_dict(self) -> dict:
        return {
            "email": self.email,
            "otp": self.otp,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "verified": self.verified,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResetChallenge":
        return cls(
            email=data["email"],
            otp=str(data["otp"]),
            issued_at=datetime.fromisoformat(data["issued_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            verified=bool(data.get("verified", False)),
        )


class PasswordResetService:
    def __init__(
        self,
        store: EphemeralStateStore,
        credentials: CredentialStore,
        notifier: NotificationSender,
        ttl_seconds: Optional[int] = None,
        hasher: Callable[[str], str] = get_password_hash,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.credentials = credentials
        self.notifier = notifier
        self.ttl_seconds = settings.reset_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.hasher = hasher
        self.now = now

    async def load_challenge(self, email: str) -> Optional[ResetChallenge]:
        """Return the live challenge for email, or None."""
        data = await self.store.get(challenge_key(email))
        if not data:
            return None
        try:
            challenge = ResetChallenge.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed reset challenge for {email}: {e}")
            return None
        if challenge.is_expired(self.now()):
            return None
        return challenge

    @timeit("password_reset.request_reset")
    async def request_reset(self, email: str) -> ServiceResult:
        email = normalize_email(email)
        try:
            user = await self.credentials.find_by_email(email)
            if not user:
                logger.info(f"Reset requested for unknown email {email}")
                return ServiceResult.fail(ErrorKind.NOT_FOUND, MSG_USER_NOT_FOUND)

            challenge = ResetChallenge.issue(email, generate_otp(), self.now(), self.ttl_seconds)
            # a new challenge starts unverified
            await self.store.delete(verified_key(email))
            await self.store.put(challenge_key(email), challenge.as_dict(), self.ttl_seconds)

            try:
                delivered = await self.notifier.send_reset_otp(email, challenge.otp, self.ttl_seconds // 60)
            except Exception as e:
                logger.error(f"Notification sender failed for {email}: {e}")
                delivered = False
            if not delivered:
                await self.store.delete(challenge_key(email))
                return ServiceResult.fail(ErrorKind.INTERNAL, "Failed to send OTP email.")

            logger.info(f"Reset challenge issued for {email}, expires {challenge.expires_at.isoformat()}")
            return ServiceResult.ok(MSG_OTP_SENT)
        except Exception as e:
            logger.error(f"Error requesting password reset: {e}")
            return ServiceResult.fail(ErrorKind.INTERNAL, MSG_INTERNAL)

    @timeit("password_reset.verify_otp")
    async def verify_otp(self, email: str, candidate_otp: str) -> ServiceResult:
        email = normalize_email(email)
        try:
            challenge = await self.load_challenge(email)
            # wrong code, absent and expired are reported identically
            if challenge is None or not otp_matches(challenge.otp, candidate_otp):
                logger.info(f"OTP verification failed for {email}")
                return ServiceResult.fail(ErrorKind.INVALID_OR_EXPIRED, MSG_INVALID_OTP)

            await self.store.put(verified_key(email), True, self.ttl_seconds)
            challenge.verified = True
            remaining = challenge.remaining_seconds(self.now())
            await self.store.put(challenge_key(email), challenge.as_dict(), remaining)

            logger.info(f"OTP verified for {email}")
            return ServiceResult.ok(MSG_OTP_VERIFIED)
        except Exception as e:
            logger.error(f"Error verifying password reset OTP: {e}")
            return ServiceResult.fail(ErrorKind.INTERNAL, MSG_INTERNAL)

    @timeit("password_reset.commit_password")
    async def commit_password(self, email: str, new_password: str) -> ServiceResult:
        email = normalize_email(email)
        try:
            if not await self.store.get(verified_key(email)):
                logger.info(f"Password commit without verified OTP for {email}")
                return ServiceResult.fail(ErrorKind.NOT_VERIFIED, MSG_NOT_VERIFIED)

            user = await self.credentials.find_by_email(email)
            if not user:
                return ServiceResult.fail(ErrorKind.NOT_FOUND, MSG_USER_NOT_FOUND)

            hashed = self.hasher(new_password)
            if not await self.credentials.update_password_hash(email, hashed):
                return ServiceResult.fail(ErrorKind.NOT_FOUND, MSG_USER_NOT_FOUND)

            try:
                await self.store.delete(verified_key(email))
                await self.store.delete(challenge_key(email))
            except Exception as e:
                logger.error(f"Password updated for {email} but reset state cleanup failed: {e}")

            logger.info(f"Password reset completed for {email}")
            return ServiceResult.ok(MSG_RESET_DONE)
        except Exception as e:
            logger.error(f"Error resetting password with OTP: {e}")
            return ServiceResult.fail(ErrorKind.INTERNAL, MSG_INTERNAL)
