"""
Authenticator entries: validation, otpauth:// parsing and rolling codes.

Raw secrets are fetched just-in-time from the secret vault and cached in
process memory only; they are never written to the database or logs.
"""

from __future__ import annotations

import base64
import binascii
import re
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import pyotp

from app.core.codes import (
    DEFAULT_TOTP_ALGORITHM,
    DEFAULT_TOTP_DIGITS,
    DEFAULT_TOTP_PERIOD,
    Timestamp,
    generate_totp,
    remaining_window_seconds,
)
from app.core.config import settings
from app.models.totp_entry import TOTPEntry

_ALLOWED_ALGORITHMS = {"SHA1", "SHA256", "SHA512"}
_SECRET_CHARS = re.compile(r"^[A-Z2-7]+=*$")
_ALGORITHM_BY_DIGEST = {"sha1": "SHA1", "sha256": "SHA256", "sha512": "SHA512"}


def normalize_secret(secret: str) -> str:
    if not secret:
        raise ValueError("Secret is required")
    return re.sub(r"\s+", "", secret).replace("-", "").upper()


def validate_secret(secret: str) -> str:
    """Return the secret as unpadded upper-case Base32, or raise ValueError."""
    normalized = normalize_secret(secret)
    padding = len(normalized) % 8
    if padding:
        normalized = normalized + ("=" * (8 - padding))
    if not _SECRET_CHARS.match(normalized):
        raise ValueError("Secret must be Base32 encoded")
    try:
        base64.b32decode(normalized, casefold=True)
    except binascii.Error as exc:
        raise ValueError("Secret is not valid Base32") from exc
    return normalized.rstrip("=")


def validate_algorithm(algorithm: Optional[str]) -> str:
    if not algorithm:
        return DEFAULT_TOTP_ALGORITHM
    algorithm = algorithm.upper()
    if algorithm not in _ALLOWED_ALGORITHMS:
        raise ValueError("Algorithm must be SHA1, SHA256 or SHA512")
    return algorithm


def validate_digits_and_period(digits: Optional[int], period: Optional[int]) -> Tuple[int, int]:
    digits = digits or DEFAULT_TOTP_DIGITS
    period = period or DEFAULT_TOTP_PERIOD
    if digits < 6 or digits > 8:
        raise ValueError("Digits must be between 6 and 8")
    if period < 15 or period > 120:
        raise ValueError("Period must be between 15 and 120 seconds")
    return digits, period


@dataclass
class ParsedOtpAuth:
    secret: str
    service_name: str
    account_label: str
    digits: int
    period: int
    algorithm: str


def parse_otpauth_uri(uri: str) -> ParsedOtpAuth:
    """
    Parse an otpauth://totp/ provisioning URI (as encoded in setup QR codes).

    Raises:
        ValueError: If the URI is malformed or not a TOTP URI
    """
    otp = pyotp.parse_uri(uri)
    if not isinstance(otp, pyotp.TOTP):
        raise ValueError("Only time-based (TOTP) URIs are supported")

    algorithm = _ALGORITHM_BY_DIGEST.get(otp.digest().name.lower())
    if algorithm is None:
        raise ValueError("Algorithm must be SHA1, SHA256 or SHA512")
    digits, period = validate_digits_and_period(otp.digits, otp.interval)

    return ParsedOtpAuth(
        secret=validate_secret(otp.secret),
        service_name=otp.issuer or otp.name or "",
        account_label=otp.name or "",
        digits=digits,
        period=period,
        algorithm=algorithm,
    )


@dataclass
class CurrentTotp:
    code: str
    remaining_seconds: int
    period: int


class TotpService:
    """Renders current codes for stored entries."""

    def __init__(self, secret_service=None):
        self._secret_service = secret_service
        self._secrets: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    @property
    def secret_service(self):
        if self._secret_service is None:
            from app.services.secret_reveal import secret_reveal_service
            self._secret_service = secret_reveal_service
        return self._secret_service

    def store_secret(self, raw_secret: str) -> str:
        return self.secret_service.store(raw_secret, settings.TOTP_REVEAL_SCOPE)

    def reveal_secret(self, secret_ref: str, access_scope: Optional[str] = None) -> str:
        """
        Return the raw secret for a reference, using the in-memory cache.

        Raises:
            NotPermitted: Reveal refused for this scope
            Unavailable: Secret vault unreachable
        """
        scope = access_scope or settings.TOTP_REVEAL_SCOPE
        # Cached per scope: a permitted reveal never answers for another scope
        key = (secret_ref, scope)
        with self._lock:
            cached = self._secrets.get(key)
        if cached is not None:
            return cached

        secret = self.secret_service.reveal(secret_ref, scope)
        with self._lock:
            self._secrets[key] = secret
        return secret

    def forget(self, secret_ref: str) -> None:
        with self._lock:
            for key in [key for key in self._secrets if key[0] == secret_ref]:
                del self._secrets[key]

    def discard_secret(self, secret_ref: str) -> None:
        """Drop the cached copy and delete the secret from the vault."""
        self.forget(secret_ref)
        self.secret_service.delete(secret_ref)

    def current_totp(
        self,
        entry: TOTPEntry,
        at_time: Optional[Timestamp] = None,
        access_scope: Optional[str] = None
    ) -> CurrentTotp:
        """The code an authenticator app would show for this entry right now."""
        secret = self.reveal_secret(entry.secret_ref, access_scope)
        return CurrentTotp(
            code=generate_totp(
                secret,
                period=entry.period,
                digits=entry.digits,
                algorithm=entry.algorithm,
                at_time=at_time,
            ),
            remaining_seconds=remaining_window_seconds(entry.period, at_time),
            period=entry.period,
        )


# Singleton instance
totp_service = TotpService()
