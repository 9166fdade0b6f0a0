"""Playwright driver for the Actionstep web UI.

Owns one Chromium process and one page against the configured Actionstep
base URL, and exposes the primitives the session manager and the job
processor are built from: navigation, login form entry, the 2FA challenge,
the origination fee form, save, and diagnostic screenshots.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator
from urllib.parse import quote

from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from automation.errors import (
    ChallengeFailed,
    ElementNotFound,
    LaunchError,
    NavigationError,
    OptionNotFound,
)
from automation.locators import SelectorProfile, candidates, first_match, load_selector_profile
from src.config import DEFAULT_RECORD_URL_TEMPLATE

logger = logging.getLogger(__name__)

LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]
VIEWPORT = {"width": 1280, "height": 800}
ASSIGNEE_WAIT_SECONDS = 5.0
MAX_REPORTED_OPTIONS = 10

_OPTIONS_JS = (
    "opts => opts.map(o => ({value: o.value, label: (o.title || o.textContent || '').trim()}))"
)
_SELECTED_LABEL_JS = (
    "el => { const o = el.options[el.selectedIndex];"
    " return o ? (o.title || o.textContent || '').trim() : null; }"
)


class FeeOutcome(str, Enum):
    APPLIED = "applied"
    ALREADY_SET = "already_set"


def format_percentage(value: Any) -> str:
    """Normalize a percentage to exactly two decimal places.

    >>> format_percentage(10)
    '10.00'
    >>> format_percentage("7.5")
    '7.50'
    """
    try:
        pct = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid percentage: {value!r}") from exc
    if not pct.is_finite() or pct <= 0 or pct > 100:
        raise ValueError(f"Invalid percentage {value!r} (must be between 0 and 100)")
    return str(pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class FeeState:
    """What the billing settings form currently shows."""

    enabled: bool
    assignee: str | None
    percentage: str | None

    def matches(self, assignee: str, percentage: str) -> bool:
        if not self.enabled or self.assignee != assignee or not self.percentage:
            return False
        try:
            return format_percentage(self.percentage) == percentage
        except ValueError:
            return False


class DialogAutoAccept:
    """One-shot acceptor for the native confirm() shown before a save."""

    def __init__(self, page: Any):
        self.page = page
        self.consumed = False
        self.message: str | None = None
        self._armed = False

    def arm(self) -> None:
        if not self._armed:
            self.page.on("dialog", self._handle)
            self._armed = True

    def disarm(self) -> None:
        if self._armed:
            self.page.remove_listener("dialog", self._handle)
            self._armed = False

    async def _handle(self, dialog: Any) -> None:
        if not self._armed:
            return
        self.disarm()
        self.consumed = True
        self.message = dialog.message
        logger.info("Confirmation dialog detected: %s", (dialog.message or "")[:100])
        await dialog.accept()


class RemoteUIDriver:
    """Single browser session against one Actionstep base URL."""

    def __init__(
        self,
        base_url: str,
        *,
        record_url_template: str = DEFAULT_RECORD_URL_TEMPLATE,
        screenshot_dir: str | Path = "screenshots",
        headless: bool = True,
        profile: SelectorProfile | None = None,
        navigation_timeout: float = 30.0,
        element_timeout: float = 10.0,
        save_settle_delay: float = 3.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.record_url_template = record_url_template
        self.screenshot_dir = Path(screenshot_dir)
        self.headless = headless
        self.profile = profile or load_selector_profile()
        self.navigation_timeout = navigation_timeout
        self.element_timeout = element_timeout
        self.save_settle_delay = save_settle_delay

        self.page: Any = None
        self._browser: Any = None
        self._playwright: Any = None
        self._current_record: str | None = None

    @classmethod
    def from_settings(cls, settings: Any) -> RemoteUIDriver:
        return cls(
            settings.actionstep_url,
            record_url_template=settings.record_url_template,
            screenshot_dir=settings.screenshot_dir,
            headless=settings.headless,
            profile=load_selector_profile(settings.selector_profile),
            navigation_timeout=settings.navigation_timeout,
            element_timeout=settings.element_timeout,
            save_settle_delay=settings.save_settle_delay,
        )

    # -- lifecycle -----------------------------------------------------

    @property
    def is_launched(self) -> bool:
        return self.page is not None

    async def launch(self) -> Any:
        """Start Chromium and open the working page."""
        if self.is_launched:
            return self.page
        logger.info("Launching browser (headless=%s)...", self.headless)
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless, args=LAUNCH_ARGS
            )
            page = await self._browser.new_page(viewport=VIEWPORT)
            page.set_default_timeout(self.navigation_timeout * 1000)
        except Exception as exc:
            await self.close()
            raise LaunchError(f"Could not launch browser: {exc}") from exc
        self.page = page
        logger.info("Browser launched")
        return page

    async def close(self) -> None:
        """Tear down the browser. Safe to call more than once."""
        browser, playwright = self._browser, self._playwright
        self.page = self._browser = self._playwright = None
        self._current_record = None
        if browser is not None:
            logger.info("Closing browser...")
            try:
                await browser.close()
            except Exception as exc:
                logger.warning("Browser close failed (already gone?): %s", exc)
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as exc:
                logger.warning("Playwright stop failed: %s", exc)

    def _require_page(self) -> Any:
        if self.page is None:
            raise NavigationError("Browser closed: launch() the driver first")
        return self.page

    # -- navigation ----------------------------------------------------

    def record_url(self, record_id: str) -> str:
        return self.record_url_template.format(
            record_id=quote(str(record_id), safe=""),
            base_url=self.base_url,
        )

    async def _goto(self, url: str) -> None:
        page = self._require_page()
        logger.info("Navigating to: %s", url)
        try:
            await page.goto(
                url, wait_until="networkidle", timeout=self.navigation_timeout * 1000
            )
        except PlaywrightTimeoutError as exc:
            raise NavigationError(f"Timed out loading {url}: {exc}") from exc

    async def goto_login(self) -> None:
        await self._goto(self.base_url)

    async def goto_record(self, record_id: str) -> None:
        self._current_record = str(record_id)
        await self._goto(self.record_url(record_id))

    def is_auth_url(self, url: str) -> bool:
        return any(marker in url for marker in self.profile.auth_path_markers)

    def is_mfa_url(self, url: str) -> bool:
        return any(marker in url for marker in self.profile.mfa_path_markers)

    def is_on_auth_page(self) -> bool:
        """True on a login/2FA page, or when there is no page at all."""
        if self.page is None:
            return True
        try:
            url = self.page.url
        except Exception as exc:
            logger.debug("Could not read page URL: %s", exc)
            return True
        return self.is_auth_url(url or "")

    # -- element lookup ------------------------------------------------

    async def _find(
        self,
        selectors: list[str],
        what: str,
        *,
        text_scope: str | None = None,
        keywords: list[str] | tuple[str, ...] = (),
    ) -> Any:
        page = self._require_page()
        match = await first_match(
            page, candidates(selectors, text_scope=text_scope, keywords=keywords)
        )
        if match is None:
            await self.screenshot(f"missing-{what.replace(' ', '-')}", self._current_record)
            raise ElementNotFound(f"Could not find {what}")
        return match.element

    async def _wait_for_any(self, selectors: list[str], what: str, timeout: float) -> None:
        page = self._require_page()
        try:
            await page.wait_for_selector(
                ", ".join(selectors), state="attached", timeout=timeout * 1000
            )
        except PlaywrightTimeoutError as exc:
            await self.screenshot(f"missing-{what.replace(' ', '-')}", self._current_record)
            raise ElementNotFound(f"Timed out waiting for {what}") from exc

    # -- login ---------------------------------------------------------

    async def fill_credentials(self, username: str, password: str) -> None:
        p = self.profile
        await self._wait_for_any(p.username, "login form", self.element_timeout)
        username_input = await self._find(p.username, "username input")
        password_input = await self._find(p.password, "password input")
        logger.info("Entering username and password...")
        await username_input.fill(username)
        await password_input.fill(password)

    async def submit_login_form(self) -> None:
        page = self._require_page()
        match = await first_match(page, candidates(self.profile.login_submit))
        logger.info("Submitting login form...")
        try:
            async with page.expect_navigation(
                wait_until="networkidle", timeout=self.navigation_timeout * 1000
            ):
                if match is not None:
                    await match.element.click()
                else:
                    password_input = await self._find(self.profile.password, "password input")
                    await password_input.press("Enter")
        except PlaywrightTimeoutError as exc:
            raise NavigationError(f"No navigation after submitting login form: {exc}") from exc
        logger.info("URL after login submit: %s", page.url)

    async def detect_2fa_challenge(self) -> Any | None:
        """Return the 2FA code input when the page is asking for one."""
        page = self._require_page()
        p = self.profile
        on_mfa_url = self.is_mfa_url(page.url)
        if on_mfa_url:
            logger.info("Detected MFA page by URL")
            try:
                await page.wait_for_selector(
                    ", ".join(p.mfa_code), state="attached", timeout=self.element_timeout * 1000
                )
            except PlaywrightTimeoutError:
                logger.info("MFA page loaded without a known code input")

        await self.screenshot("after-initial-login")

        match = await first_match(page, candidates(p.mfa_code))
        if match is not None:
            logger.info("Found 2FA input with selector: %s", match.matcher.description)
            return match.element

        if on_mfa_url:
            await self.screenshot("2fa-page-unknown")
            match = await first_match(page, candidates(p.mfa_generic))
            if match is not None:
                logger.info("Using generic input %s for 2FA code", match.matcher.description)
                return match.element

        logger.info("No 2FA detected")
        return None

    async def enter_code(self, code_input: Any, code: str) -> None:
        logger.info("Entering 2FA code...")
        await code_input.fill("")
        await code_input.fill(code)
        await self.screenshot("2fa-code-entered")

    async def submit_challenge(self, code_input: Any) -> None:
        page = self._require_page()
        p = self.profile
        match = await first_match(
            page,
            candidates(p.mfa_submit, text_scope="button", keywords=p.mfa_submit_keywords),
        )
        if match is not None:
            logger.info("Clicking 2FA submit: %s", match.matcher.description)
            await match.element.click()
        else:
            logger.info("2FA submit button not found, pressing Enter")
            await code_input.press("Enter")

        try:
            await page.wait_for_url(
                lambda url: not self.is_auth_url(url),
                wait_until="networkidle",
                timeout=self.navigation_timeout * 1000,
            )
        except PlaywrightTimeoutError:
            logger.info("Navigation timeout after 2FA submission")

        if self.is_on_auth_page():
            await self.screenshot("2fa-still-on-page")
            raise ChallengeFailed(
                "Still on MFA page after submitting code. Code may be incorrect or expired."
            )
        await self.screenshot("after-2fa-submit")

    # -- origination fee form ------------------------------------------

    async def ensure_fee_enabled(self) -> bool:
        """Tick the origination fee checkbox unless it already is.

        Returns True when a click was made.
        """
        checkbox = await self._find(self.profile.fee_checkbox, "origination fee checkbox")
        if await checkbox.is_checked():
            logger.info("Origination fee already enabled")
            return False
        await checkbox.click()
        logger.info("Origination fee enabled")
        return True

    async def _assignee_select(self) -> Any:
        p = self.profile
        await self._wait_for_any(p.assignee_select, "staff dropdown", ASSIGNEE_WAIT_SECONDS)
        return await self._find(p.assignee_select, "staff dropdown")

    async def select_assignee(self, name: str) -> str:
        """Select the option whose label is exactly ``name``; return its value."""
        logger.info("Looking for staff member: %s", name)
        select = await self._assignee_select()
        options = await select.eval_on_selector_all("option", _OPTIONS_JS)
        option = next((o for o in options if o["label"] == name), None)
        if option is None:
            available = [o["label"] for o in options][:MAX_REPORTED_OPTIONS]
            logger.error("Available staff members (first %d): %s", len(available), available)
            await self.screenshot("staff-not-found", self._current_record)
            raise OptionNotFound(name, available)
        await select.select_option(value=option["value"])
        logger.info("Selected staff member %s (ID: %s)", option["label"], option["value"])
        return option["value"]

    async def enter_percentage(self, value: Any) -> str:
        formatted = format_percentage(value)
        field = await self._find(self.profile.percentage_input, "percentage input")
        await field.fill("")
        await field.fill(formatted)
        logger.info("Entered percentage: %s%%", formatted)
        return formatted

    async def read_fee_state(self) -> FeeState:
        p = self.profile
        checkbox = await self._find(p.fee_checkbox, "origination fee checkbox")
        enabled = bool(await checkbox.is_checked())
        page = self._require_page()
        assignee = None
        match = await first_match(page, candidates(p.assignee_select))
        if match is not None:
            assignee = await match.element.evaluate(_SELECTED_LABEL_JS)
        percentage = None
        match = await first_match(page, candidates(p.percentage_input))
        if match is not None:
            percentage = await match.element.input_value()
        return FeeState(enabled=enabled, assignee=assignee, percentage=percentage)

    async def set_origination_fee(self, referrer_name: str, percentage: Any) -> FeeOutcome:
        """Set the fee checkbox, staff member and percentage, then save."""
        formatted = format_percentage(percentage)
        logger.info("Setting origination fee: %s%% to %s", formatted, referrer_name)

        current = await self.read_fee_state()
        if current.matches(referrer_name, formatted):
            logger.info("Origination fee already set to %s%% for %s", formatted, referrer_name)
            return FeeOutcome.ALREADY_SET

        await self.ensure_fee_enabled()
        await self.screenshot("origination-enabled", self._current_record)
        await self.select_assignee(referrer_name)
        await self.enter_percentage(formatted)
        await self.screenshot("origination-filled", self._current_record)
        await self.save()
        return FeeOutcome.APPLIED

    # -- save ----------------------------------------------------------

    @asynccontextmanager
    async def confirm_next_dialog(self) -> AsyncIterator[DialogAutoAccept]:
        """Auto-accept the next native dialog raised inside the block only."""
        guard = DialogAutoAccept(self._require_page())
        guard.arm()
        try:
            yield guard
        finally:
            guard.disarm()

    async def save(self) -> None:
        p = self.profile
        save_button = await self._find(
            p.save, "save button", text_scope=p.text_scan_scope, keywords=p.save_keywords
        )
        async with self.confirm_next_dialog() as guard:
            logger.info("Clicking Save button...")
            await save_button.click()
            # Actionstep gives no reliable post-save signal; wait it out.
            await asyncio.sleep(self.save_settle_delay)
        if not guard.consumed:
            logger.info("No confirmation dialog appeared during save")
        await self.screenshot("origination-saved", self._current_record)

    # -- diagnostics ---------------------------------------------------

    async def screenshot(self, label: str, record_id: str | None = None) -> Path | None:
        """Full-page screenshot for humans. Never raises."""
        if self.page is None:
            return None
        name = f"{label}-{record_id}.png" if record_id else f"{label}.png"
        path = self.screenshot_dir / name
        try:
            self.screenshot_dir.mkdir(parents=True, exist_ok=True)
            await self.page.screenshot(path=str(path), full_page=True)
        except Exception as exc:
            logger.warning("Screenshot %s failed: %s", path, exc)
            return None
        logger.debug("Screenshot saved: %s", path)
        return path
