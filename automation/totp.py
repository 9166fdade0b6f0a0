"""Time-based one-time codes for the Actionstep 2FA challenge."""

from __future__ import annotations

import binascii
import time
from typing import Callable

import pyotp

from automation.errors import InvalidSecret

DIGITS = 6
PERIOD = 30


class TotpGenerator:
    """Generates RFC 6238 codes from a Base32 shared secret.

    The clock is injectable so a fixed time bucket can be used in tests.
    """

    def __init__(
        self,
        secret: str,
        digits: int = DIGITS,
        period: int = PERIOD,
        clock: Callable[[], float] = time.time,
    ):
        normalized = "".join((secret or "").split()).upper()
        if not normalized:
            raise InvalidSecret("TOTP secret is empty")
        try:
            self._totp = pyotp.TOTP(normalized, digits=digits, interval=period)
            # pyotp decodes lazily; force it so bad secrets fail here
            self._totp.byte_secret()
        except (binascii.Error, ValueError) as exc:
            raise InvalidSecret(
                "TOTP secret is not valid Base32 (example: JBSWY3DPEHPK3PXP)"
            ) from exc
        self.digits = digits
        self.period = period
        self._clock = clock

    def at(self, timestamp: float) -> str:
        return self._totp.at(int(timestamp))

    def now(self) -> str:
        """Code for the current time bucket."""
        return self.at(self._clock())

    def seconds_remaining(self) -> int:
        return self.period - int(self._clock()) % self.period
