"""Login state machine for the Actionstep browser session."""

from __future__ import annotations

import enum
import logging

from automation.driver import RemoteUIDriver
from automation.errors import LoginFailed, TwoFactorRequiredButNotConfigured
from automation.totp import TotpGenerator

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


class SessionManager:
    """Keeps one driver logged in to Actionstep.

    Expiry is only observable by landing back on an auth page, so callers
    must go through ``ensure_authenticated`` before every job.
    """

    def __init__(
        self,
        driver: RemoteUIDriver,
        username: str,
        password: str,
        totp: TotpGenerator | None = None,
    ):
        self.driver = driver
        self._username = username
        self._password = password
        self._totp = totp
        self._state = SessionState.UNAUTHENTICATED

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state is SessionState.AUTHENTICATED

    async def start(self) -> None:
        """Launch the browser and log in."""
        await self.driver.launch()
        await self.login()

    async def login(self) -> None:
        logger.info("Logging in to Actionstep...")
        self._state = SessionState.AUTHENTICATING
        try:
            await self._login_steps()
        except Exception as exc:
            self._state = SessionState.UNAUTHENTICATED
            logger.error("Login failed: %s", exc)
            await self.driver.screenshot("login-error")
            raise
        self._state = SessionState.AUTHENTICATED
        logger.info("Successfully logged in")

    async def _login_steps(self) -> None:
        driver = self.driver
        await driver.goto_login()
        await driver.fill_credentials(self._username, self._password)
        await driver.submit_login_form()

        code_input = await driver.detect_2fa_challenge()
        if code_input is not None:
            if self._totp is None:
                await driver.screenshot("2fa-required-no-secret")
                raise TwoFactorRequiredButNotConfigured()
            logger.info("2FA required, generating TOTP code...")
            await driver.enter_code(code_input, self._totp.now())
            await driver.submit_challenge(code_input)
            logger.info("2FA code accepted")

        await driver.screenshot("after-full-login")
        if driver.is_on_auth_page():
            raise LoginFailed(
                "Login failed - still on authentication page. Check the login screenshots."
            )

    async def ensure_authenticated(self) -> None:
        """Re-run login when the session was never established or has expired."""
        if not self.driver.is_launched:
            logger.info("Browser not running, relaunching...")
            self._state = SessionState.UNAUTHENTICATED
            await self.driver.launch()
        if self.is_authenticated and not self.driver.is_on_auth_page():
            return
        if self.is_authenticated:
            logger.info("Session expired, re-authenticating...")
        await self.login()

    async def close(self) -> None:
        self._state = SessionState.UNAUTHENTICATED
        await self.driver.close()


def build_session(settings) -> SessionManager:
    """Create a driver + session manager pair from settings.

    Raises ``InvalidSecret`` when a TOTP secret is configured but unusable.
    """
    totp = None
    if settings.actionstep_totp_secret:
        totp = TotpGenerator(settings.actionstep_totp_secret)
    return SessionManager(
        RemoteUIDriver.from_settings(settings),
        settings.actionstep_username,
        settings.actionstep_password,
        totp=totp,
    )

