"""In-memory stand-ins for a Playwright page and the Actionstep web UI."""

from __future__ import annotations

import inspect
from contextlib import asynccontextmanager
from typing import Any, Callable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from automation.driver import RemoteUIDriver

BASE_URL = "https://go.actionstepstaging.com"
LOGIN_URL = f"{BASE_URL}/auth/login"
MFA_URL = f"{BASE_URL}/login-mfa"
DASHBOARD_URL = f"{BASE_URL}/mym/dashboard"
RECORD_URL_TEMPLATE = "{base_url}/mym/billing/action_id/{record_id}"

TOTP_SECRET = "JBSWY3DPEHPK3PXP"
FIXED_TIME = 1_700_000_000

DEFAULT_STAFF = [
    ("", "-- Select --"),
    ("101", "Smith, Jane (Staff)"),
    ("102", "Doe, John (Staff)"),
]


class FakeElement:
    def __init__(
        self,
        text: str = "",
        *,
        attrs: dict[str, str] | None = None,
        checked: bool = False,
        checkbox: bool = False,
        value: str = "",
        options: list[tuple[str, str]] | None = None,
        selected: str | None = None,
        on_click: Callable[[], Any] | None = None,
        error: Exception | None = None,
    ):
        self.text = text
        self.attrs = attrs or {}
        self.checked = checked
        self.checkbox = checkbox
        self.value = value
        self.options = options or []
        self.selected = selected
        self.on_click = on_click
        self.error = error
        self.clicks = 0
        self.fills: list[str] = []
        self.presses: list[str] = []

    def _check(self) -> None:
        if self.error is not None:
            raise self.error

    async def text_content(self) -> str:
        self._check()
        return self.text

    async def get_attribute(self, name: str) -> str | None:
        self._check()
        return self.attrs.get(name)

    async def is_checked(self) -> bool:
        self._check()
        return self.checked

    async def click(self) -> None:
        self._check()
        self.clicks += 1
        if self.checkbox:
            self.checked = not self.checked
        if self.on_click is not None:
            result = self.on_click()
            if inspect.isawaitable(result):
                await result

    async def fill(self, value: str) -> None:
        self._check()
        self.fills.append(value)
        self.value = value

    async def press(self, key: str) -> None:
        self._check()
        self.presses.append(key)
        if key == "Enter" and self.on_click is not None:
            result = self.on_click()
            if inspect.isawaitable(result):
                await result

    async def input_value(self) -> str:
        self._check()
        return self.value

    async def eval_on_selector_all(self, selector: str, script: str) -> list[dict]:
        self._check()
        return [{"value": value, "label": label.strip()} for value, label in self.options]

    async def select_option(self, value: str | None = None) -> list[str]:
        self._check()
        if value not in {v for v, _ in self.options}:
            raise PlaywrightError(f"No option with value {value!r}")
        self.selected = value
        return [value]

    async def evaluate(self, script: str) -> str | None:
        self._check()
        for value, label in self.options:
            if value == self.selected:
                return label.strip()
        return None


class FakeDialog:
    def __init__(self, message: str):
        self.message = message
        self.accepted = False
        self.dismissed = False

    async def accept(self) -> None:
        self.accepted = True

    async def dismiss(self) -> None:
        self.dismissed = True


class FakePage:
    """Just enough of ``playwright.async_api.Page`` for the driver."""

    def __init__(self, router: Callable[[FakePage, str], Any] | None = None):
        self.url = "about:blank"
        self.elements: dict[str, FakeElement] = {}
        self.scans: dict[str, list[FakeElement]] = {}
        self.router = router
        self.visits: list[str] = []
        self.screenshots: list[str] = []
        self.listeners: dict[str, list[Callable]] = {}
        self.goto_error: Exception | None = None
        self.screenshot_error: Exception | None = None
        self.default_timeout: float | None = None

    def show(self, url: str, elements: dict[str, FakeElement] | None = None) -> None:
        self.url = url
        self.elements = elements or {}
        self.scans = {}

    def set_default_timeout(self, timeout: float) -> None:
        self.default_timeout = timeout

    async def goto(self, url: str, wait_until: str | None = None, timeout: float | None = None):
        self.visits.append(url)
        if self.goto_error is not None:
            error, self.goto_error = self.goto_error, None
            raise error
        if self.router is not None:
            result = self.router(self, url)
            if inspect.isawaitable(result):
                await result
        else:
            self.url = url

    async def query_selector(self, selector: str) -> FakeElement | None:
        return self.elements.get(selector)

    async def query_selector_all(self, selector: str) -> list[FakeElement]:
        return list(self.scans.get(selector, []))

    async def wait_for_selector(self, selector: str, state: str = "visible", timeout: float | None = None):
        for part in selector.split(", "):
            if part in self.elements:
                return self.elements[part]
        raise PlaywrightTimeoutError(f"Timeout waiting for {selector}")

    @asynccontextmanager
    async def expect_navigation(self, wait_until: str | None = None, timeout: float | None = None):
        before = self.url
        yield
        if self.url == before:
            raise PlaywrightTimeoutError("Timeout waiting for navigation")

    async def wait_for_url(self, predicate: Callable[[str], bool], wait_until: str | None = None, timeout: float | None = None):
        if not predicate(self.url):
            raise PlaywrightTimeoutError(f"Timeout waiting for URL, still at {self.url}")

    def on(self, event: str, handler: Callable) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable) -> None:
        self.listeners.get(event, []).remove(handler)

    async def fire_dialog(self, message: str) -> FakeDialog:
        dialog = FakeDialog(message)
        handlers = list(self.listeners.get("dialog", []))
        if not handlers:
            # Playwright dismisses dialogs nobody listens for.
            await dialog.dismiss()
        for handler in handlers:
            result = handler(dialog)
            if inspect.isawaitable(result):
                await result
        return dialog

    async def screenshot(self, path: str, full_page: bool = False) -> bytes:
        if self.screenshot_error is not None:
            raise self.screenshot_error
        self.screenshots.append(path)
        return b""


class FakeActionstep:
    """Scripted Actionstep: login, optional 2FA, and the billing settings form."""

    def __init__(
        self,
        *,
        require_2fa: bool = False,
        expected_code: str | None = None,
        staff: list[tuple[str, str]] | None = None,
        fee_enabled: bool = False,
        assignee: str | None = None,
        percentage: str = "",
        confirm_on_save: bool = True,
    ):
        self.require_2fa = require_2fa
        self.expected_code = expected_code
        self.staff = staff if staff is not None else list(DEFAULT_STAFF)
        self.fee_enabled = fee_enabled
        self.assignee = assignee
        self.percentage = percentage
        self.confirm_on_save = confirm_on_save

        self.logged_in = False
        self.logins = 0
        self.saves: list[dict] = []
        self.record_errors: dict[str, Exception] = {}
        self.page: FakePage | None = None
        self._form: dict[str, FakeElement] = {}

    def new_page(self) -> FakePage:
        # A fresh browser has no cookies.
        self.logged_in = False
        self.page = FakePage(router=self.route)
        return self.page

    def expire_session(self) -> None:
        self.logged_in = False

    def route(self, page: FakePage, url: str) -> None:
        if "/action_id/" in url:
            record_id = url.rsplit("/", 1)[-1]
            if record_id in self.record_errors:
                raise self.record_errors.pop(record_id)
            if not self.logged_in:
                self.show_login()
                return
            self.show_billing(url)
        elif self.logged_in:
            page.show(DASHBOARD_URL)
        else:
            self.show_login()

    def show_login(self) -> None:
        self.page.show(
            LOGIN_URL,
            {
                'input[type="email"]': FakeElement(),
                'input[type="password"]': FakeElement(),
                'button[type="submit"]': FakeElement("Log in", on_click=self._submit_login),
            },
        )

    def _submit_login(self) -> None:
        self.logins += 1
        if self.require_2fa:
            code = FakeElement()
            self.page.show(
                MFA_URL,
                {
                    'input[name="code"]': code,
                    'button[type="submit"]': FakeElement(
                        "Confirm", on_click=lambda: self._submit_code(code)
                    ),
                },
            )
        else:
            self.logged_in = True
            self.page.show(DASHBOARD_URL)

    def _submit_code(self, code: FakeElement) -> None:
        if self.expected_code is None or code.value == self.expected_code:
            self.logged_in = True
            self.page.show(DASHBOARD_URL)

    def show_billing(self, url: str) -> None:
        selected = next((v for v, label in self.staff if label == self.assignee), None)
        self._form = {
            "#originator_fee_enabled": FakeElement(checked=self.fee_enabled, checkbox=True),
            "#originator_fee_participant_id": FakeElement(options=self.staff, selected=selected),
            "#originator_fee_percent": FakeElement(value=self.percentage),
            'button[type="submit"]': FakeElement("Save", on_click=self._save),
        }
        self.page.show(url, dict(self._form))

    async def _save(self) -> None:
        if self.confirm_on_save:
            dialog = await self.page.fire_dialog("Are you sure you want to save?")
            if not dialog.accepted:
                return
        form = self._form
        self.fee_enabled = form["#originator_fee_enabled"].checked
        self.assignee = await form["#originator_fee_participant_id"].evaluate("")
        self.percentage = form["#originator_fee_percent"].value
        self.saves.append(
            {"enabled": self.fee_enabled, "assignee": self.assignee, "percentage": self.percentage}
        )


class FakeDriver(RemoteUIDriver):
    """RemoteUIDriver whose browser is a FakeActionstep page."""

    def __init__(self, site: FakeActionstep, screenshot_dir: Any = "screenshots"):
        super().__init__(
            BASE_URL,
            record_url_template=RECORD_URL_TEMPLATE,
            screenshot_dir=screenshot_dir,
            navigation_timeout=0.01,
            element_timeout=0.01,
            save_settle_delay=0,
        )
        self.site = site
        self.launches = 0
        self.closes = 0

    async def launch(self) -> FakePage:
        if self.is_launched:
            return self.page
        self.launches += 1
        self.page = self.site.new_page()
        return self.page

    async def close(self) -> None:
        if self.page is not None:
            self.closes += 1
        self.page = None
        self._current_record = None
