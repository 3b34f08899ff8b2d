"""Playwright probe for the JKK Tokyo public-housing vacancy search.

The JKK search start page immediately opens the actual search form in a
pop-up window.  The probe follows it, fills the form from
:class:`~jkkwatch.core.models.SearchCriteria` and submits it:

* a ``.error`` element appearing within :data:`NO_RESULT_WAIT_MS` means the
  search returned nothing (``not_found``);
* otherwise the result page is captured as a full-page PNG screenshot under
  ``artifacts_dir`` (``found``).

A fresh Chromium instance is launched for every search and always closed
before the method returns, so no browser process outlives a check.  Closing
is itself bounded by :data:`BROWSER_CLOSE_TIMEOUT_S`, which keeps a cancelled
search from overrunning the pipeline's probe timeout by more than that.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

from playwright.async_api import Browser, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from jkkwatch.core.exceptions import BrowserProbeError
from jkkwatch.core.models import JKK_SEARCH_URL, Layout, ProbeResult, SearchCriteria
from jkkwatch.probes.base import BaseProbe

__all__ = [
    "SEARCH_URL",
    "JkkVacancyProbe",
]

logger = logging.getLogger(__name__)

#: Entry point of the JKK vacancy search.
SEARCH_URL: Final[str] = JKK_SEARCH_URL

#: Default timeout for every Playwright action and navigation.
DEFAULT_TIMEOUT_MS: Final[int] = 30_000

#: How long to wait for the "no results" marker after submitting.
NO_RESULT_WAIT_MS: Final[int] = 3_000

#: Pause that lets the pop-up window open (and the results settle).
_SETTLE_MS: Final[int] = 2_000

#: Ceiling for shutting Chromium down after a search, in seconds.
BROWSER_CLOSE_TIMEOUT_S: Final[float] = 10.0

_SCREENSHOT_WIDTH: Final[int] = 1920

_USER_AGENT: Final[str] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

# Form field names
_KANA_NAME_INPUT: Final[str] = 'input[name="akiyaInitRM.akiyaRefM.jyutakuKanaName"]'
_FLOOR_FROM_INPUT: Final[str] = 'input[name="akiyaInitRM.akiyaRefM.kaisoFrom"]'
_AREA_FROM_SELECT: Final[str] = 'select[name="akiyaInitRM.akiyaRefM.mensekiFrom"]'
_LAYOUT_CHECKBOXES: Final[str] = 'input[name="akiyaInitRM.akiyaRefM.madoris"]'
_SUBMIT_BUTTON: Final[str] = '[name="Image1"]'
_NO_RESULT_MARKER: Final[str] = ".error"

#: Layout checkboxes appear on the form in this order.
_LAYOUT_ORDER: Final[tuple[Layout, ...]] = (
    Layout.R1_LDK1,
    Layout.K2_LDK2,
    Layout.K3_LDK3,
    Layout.K4_UP,
)

_FULL_HEIGHT_JS: Final[str] = """() => Math.max(
    document.body.scrollHeight,
    document.body.offsetHeight,
    document.documentElement.clientHeight,
    document.documentElement.scrollHeight,
    document.documentElement.offsetHeight
)"""


def screenshot_path(artifacts_dir: Path, now: datetime | None = None) -> Path:
    """Return a timestamped screenshot path inside *artifacts_dir*."""
    stamp = (now or datetime.now(UTC)).strftime("%Y-%m-%dT%H-%M-%S")
    return artifacts_dir / f"property_{stamp}.png"


class JkkVacancyProbe(BaseProbe):
    """Search the JKK vacancy form with a headless (or visible) Chromium.

    Args:
        artifacts_dir: Directory that receives result screenshots.  Created
            on demand.
        timeout_ms: Default Playwright action timeout.
    """

    name = "jkk"

    def __init__(self, artifacts_dir: Path, *, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        self._artifacts_dir = artifacts_dir
        self._timeout_ms = timeout_ms

    async def run_search(self, criteria: SearchCriteria, headless: bool) -> ProbeResult:
        self._artifacts_dir.mkdir(parents=True, exist_ok=True)
        logger.debug("Launching Chromium (headless=%s)", headless)

        async with async_playwright() as pw:
            try:
                browser = await pw.chromium.launch(headless=headless, timeout=self._timeout_ms)
            except PlaywrightError as exc:
                raise BrowserProbeError(self.name, f"Browser launch failed: {exc}") from exc

            try:
                context = await browser.new_context(user_agent=_USER_AGENT)
                page = await context.new_page()
                page.set_default_timeout(self._timeout_ms)

                logger.debug("Opening %s", SEARCH_URL)
                await page.goto(SEARCH_URL, wait_until="domcontentloaded")
                await page.wait_for_timeout(_SETTLE_MS)

                # The start page opens the real form in a pop-up window.
                if len(context.pages) > 1:
                    page = context.pages[-1]
                await page.wait_for_load_state("domcontentloaded")

                await self._fill_form(page, criteria)

                logger.debug("Submitting search")
                await page.locator(_SUBMIT_BUTTON).first.click()
                await page.wait_for_load_state("domcontentloaded")
                await page.wait_for_timeout(_SETTLE_MS)

                if await self._has_no_results(page):
                    logger.debug("Search returned no results")
                    return ProbeResult.not_found()

                path = await self._capture(page)
                logger.info("Search returned results; screenshot saved to %s", path)
                return ProbeResult.found(str(path))
            except PlaywrightTimeoutError as exc:
                raise BrowserProbeError(self.name, f"Timed out: {exc}") from exc
            except PlaywrightError as exc:
                raise BrowserProbeError(self.name, str(exc)) from exc
            finally:
                await _close_browser(browser)

    async def _fill_form(self, page: Page, criteria: SearchCriteria) -> None:
        kana = await page.wait_for_selector(_KANA_NAME_INPUT)
        await kana.fill(criteria.kana_name)

        floor = await page.wait_for_selector(_FLOOR_FROM_INPUT)
        await floor.fill(criteria.floor_from)

        if criteria.area_from:
            area = await page.wait_for_selector(_AREA_FROM_SELECT)
            await area.select_option(label=criteria.area_from)

        wanted = set(criteria.layouts)
        checkboxes = await page.query_selector_all(_LAYOUT_CHECKBOXES)
        for layout, checkbox in zip(_LAYOUT_ORDER, checkboxes):
            if await checkbox.is_checked() != (layout in wanted):
                await checkbox.click()

    async def _has_no_results(self, page: Page) -> bool:
        try:
            await page.wait_for_selector(_NO_RESULT_MARKER, timeout=NO_RESULT_WAIT_MS)
        except PlaywrightTimeoutError:
            return False
        return True

    async def _capture(self, page: Page) -> Path:
        height = await page.evaluate(_FULL_HEIGHT_JS)
        await page.set_viewport_size({"width": _SCREENSHOT_WIDTH, "height": int(height)})
        path = screenshot_path(self._artifacts_dir)
        await page.screenshot(path=str(path), full_page=True)
        return path


async def _close_browser(browser: Browser) -> None:
    try:
        async with asyncio.timeout(BROWSER_CLOSE_TIMEOUT_S):
            await browser.close()
    except TimeoutError:
        logger.warning(
            "Chromium did not close within %.0fs; abandoning it", BROWSER_CLOSE_TIMEOUT_S
        )
    except PlaywrightError as exc:
        logger.warning("Chromium close failed: %s", exc)
