"""
Verification code derivation.

A challenge stores a random base32 secret; the code sent to the user is
derived from it with pyotp, either time-stepped (TOTP) or counter-based at a
fixed counter (HOTP, so a secret always maps to the same code).
"""

import binascii

import pyotp

from accounts.core.config import settings

HOTP_COUNTER = 0


def new_secret() -> str:
    return pyotp.random_base32()


class CodeGenerator:
    def __init__(
        self,
        mode: str = "totp",
        digits: int = 6,
        interval: int = 300,
        valid_window: int = 1,
    ):
        if mode not in ("totp", "hotp"):
            raise ValueError(f"unknown code mode {mode!r}")
        self.mode = mode
        self.digits = digits
        self.interval = interval
        self.valid_window = valid_window

    @classmethod
    def from_settings(cls) -> "CodeGenerator":
        return cls(
            mode=settings.OTP_CODE_MODE,
            digits=settings.OTP_DIGITS,
            interval=settings.OTP_INTERVAL_SECONDS,
            valid_window=settings.OTP_VALID_WINDOW,
        )

    def _otp(self, secret: str):
        if self.mode == "hotp":
            return pyotp.HOTP(secret, digits=self.digits)
        return pyotp.TOTP(secret, digits=self.digits, interval=self.interval)

    def generate(self, secret: str) -> str:
        otp = self._otp(secret)
        if self.mode == "hotp":
            return otp.at(HOTP_COUNTER)
        return otp.now()

    def verify(self, secret: str, submitted) -> bool:
        # Anything that isn't a well-formed code simply doesn't match.
        if not isinstance(submitted, str):
            return False
        code = submitted.strip()
        if len(code) != self.digits or not code.isdigit():
            return False
        try:
            otp = self._otp(secret)
            if self.mode == "hotp":
                return otp.verify(code, HOTP_COUNTER)
            return otp.verify(code, valid_window=self.valid_window)
        except (binascii.Error, ValueError, TypeError):
            return False
