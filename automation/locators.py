"""Element lookup strategies for a remote UI whose markup we do not control.

Every interactive lookup is an ordered list of matchers combined by
``first_match``: CSS candidates first, then a scan of a broad element class
by visible text. Matchers only need ``query_selector`` /
``query_selector_all`` on the page, so they can be exercised against fake
DOM fixtures as well as a live Playwright page.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Protocol, Sequence

import yaml

from automation.errors import is_browser_crash

logger = logging.getLogger(__name__)

BUNDLED_PROFILE = Path(__file__).resolve().parent / "selectors.yaml"


class Matcher(Protocol):
    description: str

    async def __call__(self, page: Any) -> Any | None: ...


async def element_text(element: Any) -> str:
    """Visible text of an element, or its ``value`` for input buttons."""
    text = (await element.text_content() or "").strip()
    if not text:
        text = (await element.get_attribute("value") or "").strip()
    return text


@dataclass(frozen=True)
class CssMatcher:
    selector: str

    @property
    def description(self) -> str:
        return self.selector

    async def __call__(self, page: Any) -> Any | None:
        return await page.query_selector(self.selector)


@dataclass(frozen=True)
class TextMatcher:
    """Scan every element under ``scope`` for a case-insensitive keyword."""

    scope: str
    keywords: tuple[str, ...]

    @property
    def description(self) -> str:
        return f"{self.scope} with text {list(self.keywords)}"

    async def __call__(self, page: Any) -> Any | None:
        keywords = [k.lower() for k in self.keywords]
        for element in await page.query_selector_all(self.scope):
            text = (await element_text(element)).lower()
            if text and any(k in text for k in keywords):
                return element
        return None


@dataclass(frozen=True)
class Match:
    element: Any
    matcher: Matcher


def candidates(
    selectors: Sequence[str],
    *,
    text_scope: str | None = None,
    keywords: Sequence[str] = (),
) -> list[Matcher]:
    """Build the ordered matcher list: CSS selectors, then an optional text scan."""
    matchers: list[Matcher] = [CssMatcher(s) for s in selectors]
    if text_scope and keywords:
        matchers.append(TextMatcher(text_scope, tuple(keywords)))
    return matchers


async def first_match(page: Any, matchers: Sequence[Matcher]) -> Match | None:
    """Evaluate matchers in order and return the first hit.

    A matcher that raises is treated as not-found, unless the error says the
    browser itself is gone.
    """
    for matcher in matchers:
        try:
            element = await matcher(page)
        except Exception as exc:
            if is_browser_crash(exc):
                raise
            logger.debug("Matcher %s failed: %s", matcher.description, exc)
            continue
        if element is not None:
            logger.debug("Matched %s", matcher.description)
            return Match(element=element, matcher=matcher)
    return None


@dataclass(frozen=True)
class SelectorProfile:
    username: list[str]
    password: list[str]
    login_submit: list[str]
    mfa_code: list[str]
    mfa_generic: list[str]
    mfa_submit: list[str]
    mfa_submit_keywords: list[str]
    fee_checkbox: list[str]
    assignee_select: list[str]
    percentage_input: list[str]
    save: list[str]
    save_keywords: list[str]
    text_scan_scope: str
    auth_path_markers: list[str]
    mfa_path_markers: list[str]


def _read_yaml(path: Path) -> dict:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Selector profile {path} must be a mapping")
    return data


def load_selector_profile(path: str | None = None) -> SelectorProfile:
    """Load the bundled selector profile, with keys overridden from ``path``."""
    data = _read_yaml(BUNDLED_PROFILE)
    if path:
        overrides = _read_yaml(Path(path))
        unknown = set(overrides) - {f.name for f in fields(SelectorProfile)}
        if unknown:
            raise ValueError(f"Unknown selector profile keys: {sorted(unknown)}")
        data.update(overrides)
        logger.info("Loaded selector overrides from %s", path)
    return SelectorProfile(**data)
