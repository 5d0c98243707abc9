"""
Code generation: random numeric verification codes and RFC 6238 TOTP codes.

All functions here are pure (apart from reading the OS random source) and
need no locking. TOTP codes must validate against any standards-compliant
authenticator app, so generation goes through pyotp with the counter
computed explicitly as floor(at_time / period).
"""

import hashlib
import secrets
import time
from typing import Optional, Union

import pyotp

DEFAULT_TOTP_PERIOD = 30
DEFAULT_TOTP_DIGITS = 6
DEFAULT_TOTP_ALGORITHM = "SHA1"

_DIGESTS = {
    "SHA1": hashlib.sha1,
    "SHA256": hashlib.sha256,
    "SHA512": hashlib.sha512,
}

Timestamp = Union[int, float]


def generate_numeric_code(length: int = 6) -> str:
    """
    Generate a uniformly random decimal code of the given length.

    Uses the secrets module so codes cannot be predicted. Leading zeros are
    kept: "004211" is a valid 6-digit code.
    """
    if length < 1:
        raise ValueError("Code length must be positive")
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def digest_for_algorithm(algorithm: str):
    try:
        return _DIGESTS[algorithm.upper()]
    except KeyError:
        raise ValueError(f"Unsupported TOTP algorithm: {algorithm}") from None


def _resolve_time(at_time: Optional[Timestamp]) -> int:
    return int(time.time() if at_time is None else at_time)


def generate_totp(
    secret: str,
    period: int = DEFAULT_TOTP_PERIOD,
    digits: int = DEFAULT_TOTP_DIGITS,
    algorithm: str = DEFAULT_TOTP_ALGORITHM,
    at_time: Optional[Timestamp] = None,
) -> str:
    """
    Compute the TOTP code for a Base32 secret at a Unix timestamp.

    Args:
        secret: Base32-encoded shared secret (padding optional, case-insensitive)
        period: Time step in seconds
        digits: Number of output digits (left-zero-padded)
        algorithm: SHA1, SHA256 or SHA512
        at_time: Unix timestamp in seconds; defaults to now

    Returns:
        str: The one-time code
    """
    if period < 1:
        raise ValueError("TOTP period must be positive")
    otp = pyotp.TOTP(
        secret,
        digits=digits,
        interval=period,
        digest=digest_for_algorithm(algorithm),
    )
    counter = _resolve_time(at_time) // period
    return otp.generate_otp(counter)


def remaining_window_seconds(period: int = DEFAULT_TOTP_PERIOD, at_time: Optional[Timestamp] = None) -> int:
    """
    Seconds left in the current TOTP window, in [1, period].

    Only drives UI countdowns; it is not a security boundary.
    """
    return period - (_resolve_time(at_time) % period)
