import re
import secrets

OTP_MIN = 100000
OTP_MAX = 999999

_OTP_PATTERN = re.compile(r"[0-9]{6}", re.ASCII)


def normalize_email(email: str) -> str:
    """Trim and lower-case an email so keys and lookups agree."""
    return (email or "").strip().lower()


def generate_otp() -> str:
    """Return a 6-digit code drawn uniformly from [100000, 999999]."""
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))


def is_well_formed_otp(candidate) -> bool:
    return isinstance(candidate, str) and bool(_OTP_PATTERN.fullmatch(candidate))


def otp_matches(stored: str, candidate: str) -> bool:
    # Malformed input never matches
    if not is_well_formed_otp(candidate) or not stored:
        return False
    return secrets.compare_digest(str(stored), candidate)


def challenge_key(email: str) -> str:
    return f"reset_otp_{normalize_email(email)}"


def verified_key(email: str) -> str:
    return f"reset_verified_{normalize_email(email)}"
