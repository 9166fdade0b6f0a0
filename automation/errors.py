"""Error taxonomy for the Actionstep automation worker."""

from __future__ import annotations

# Substrings Playwright uses when the page, context or browser process is gone.
BROWSER_CRASH_INDICATORS = (
    "Target closed",
    "Session closed",
    "Browser closed",
    "Target page, context or browser has been closed",
    "Browser has been closed",
    "Connection closed",
)


class AutomationError(Exception):
    """Base class for errors raised while driving the remote UI."""


class ConfigurationError(AutomationError):
    """Missing or invalid configuration. Retrying cannot help."""


class TwoFactorRequiredButNotConfigured(ConfigurationError):
    """The remote UI asked for a 2FA code and no TOTP secret is configured."""

    def __init__(self, message: str | None = None):
        super().__init__(
            message
            or "2FA required but ACTIONSTEP_TOTP_SECRET not configured"
        )


class InvalidSecret(ConfigurationError):
    """The TOTP shared secret is not valid Base32."""


class LaunchError(AutomationError):
    """The browser process could not be started."""


class NavigationError(AutomationError):
    """A page did not finish loading within the navigation timeout."""


class ElementNotFound(AutomationError):
    """None of the selector candidates matched an element."""


class OptionNotFound(AutomationError):
    """No dropdown option carries the exact requested label."""

    def __init__(self, requested: str, available: list[str]):
        self.requested = requested
        self.available = list(available)[:10]
        super().__init__(
            f'Staff member "{requested}" not found in dropdown. '
            f"Check name matches exactly. Available (first {len(self.available)}): "
            f"{self.available}"
        )


class ChallengeFailed(AutomationError):
    """The 2FA code was submitted but the browser is still on an auth page."""


class LoginFailed(AutomationError):
    """Login finished but the browser is still on an authentication page."""


class JobTimeout(AutomationError):
    """A job exceeded its execution deadline."""


def is_browser_crash(exc: BaseException) -> bool:
    """True when the error says the browser, context or page was destroyed."""
    message = str(exc)
    return any(indicator in message for indicator in BROWSER_CRASH_INDICATORS)


def is_fatal(exc: BaseException) -> bool:
    """True for configuration errors that should never consume retries."""
    return isinstance(exc, ConfigurationError)
