"""Browser driver boundary and its Playwright implementation."""
from __future__ import annotations

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Sequence

from jobpilot.errors import BrowserActionError, NavigationError
from jobpilot.log import get_logger
from jobpilot.models import PageSnapshot

log = get_logger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class BrowserDriver(ABC):
    """What the navigation engine needs from a browser.

    Any call may raise; callers translate failures into the error taxonomy.
    """

    @abstractmethod
    def navigate(self, url: str) -> None:
        ...

    @abstractmethod
    def find_and_click(self, selectors: Sequence[str]) -> bool:
        """Click the first visible match among ``selectors``; False if none."""

    @abstractmethod
    def fill_field(self, selector: str, value: str, *, field_type: str = "text") -> None:
        ...

    @abstractmethod
    def get_visible_text(self) -> str:
        ...

    @abstractmethod
    def screenshot(self) -> bytes:
        ...

    def current_url(self) -> str:
        return ""

    def page_html(self) -> str:
        return ""

    def snapshot(self) -> PageSnapshot:
        return PageSnapshot(
            url=self.current_url(),
            html=self.page_html(),
            text=self.get_visible_text(),
            screenshot=self.screenshot(),
        )

    def close(self) -> None:
        pass


def _short(exc: BaseException) -> str:
    return str(exc)[:150].split("\n")[0]


class PlaywrightDriver(BrowserDriver):
    """Chromium via the Playwright sync API.

    One OS browser per process: constructing a second driver while one is
    open raises. Use as a context manager or call ``close()``.
    """

    _open: "PlaywrightDriver | None" = None

    def __init__(self, *, headless: bool = True, timeout_ms: int = 20_000) -> None:
        if PlaywrightDriver._open is not None:
            raise RuntimeError("A Playwright browser is already open in this process")
        _pw = os.environ.get("PLAYWRIGHT_BROWSERS_PATH", "")
        if _pw and not Path(_pw).exists():
            os.environ.pop("PLAYWRIGHT_BROWSERS_PATH", None)
        from playwright.sync_api import sync_playwright

        self.timeout_ms = timeout_ms
        self._pw = sync_playwright().start()
        try:
            self._browser = self._pw.chromium.launch(headless=headless, args=["--incognito"])
            context = self._browser.new_context(
                viewport={"width": 1280, "height": 900},
                user_agent=USER_AGENT,
            )
            self.page = context.new_page()
            self.page.set_default_timeout(timeout_ms)
        except Exception:
            self._pw.stop()
            raise
        PlaywrightDriver._open = self
        log.info("Browser started (headless=%s)", headless)

    def __enter__(self) -> "PlaywrightDriver":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def navigate(self, url: str) -> None:
        try:
            self.page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms + 5000)
        except Exception as e:
            raise NavigationError(f"Could not load {url}: {_short(e)}", {"url": url}) from e

    def find_and_click(self, selectors: Sequence[str]) -> bool:
        for sel in selectors:
            try:
                loc = self.page.locator(sel).first
                if loc.is_visible(timeout=3000):
                    loc.click()
                    log.debug("Clicked %s", sel)
                    return True
            except Exception:
                continue
        return False

    def fill_field(self, selector: str, value: str, *, field_type: str = "text") -> None:
        try:
            loc = self.page.locator(selector).first
            if field_type == "file":
                loc.set_input_files(value)
            elif field_type == "select":
                try:
                    loc.select_option(label=value)
                except Exception:
                    loc.select_option(value=value)
            elif field_type in ("checkbox", "radio"):
                if value.strip().lower() in ("1", "true", "yes", "y", "on"):
                    loc.check()
            else:
                loc.fill(value)
        except Exception as e:
            raise BrowserActionError(f"Could not fill {selector}: {_short(e)}", {"selector": selector}) from e

    def get_visible_text(self) -> str:
        try:
            return self.page.inner_text("body")
        except Exception as e:
            raise BrowserActionError(f"Could not read page text: {_short(e)}") from e

    def screenshot(self) -> bytes:
        try:
            return self.page.screenshot(full_page=False)
        except Exception as e:
            raise BrowserActionError(f"Screenshot failed: {_short(e)}") from e

    def current_url(self) -> str:
        return self.page.url

    def page_html(self) -> str:
        try:
            return self.page.content()
        except Exception as e:
            raise BrowserActionError(f"Could not read page HTML: {_short(e)}") from e

    def close(self) -> None:
        if PlaywrightDriver._open is not self:
            return
        try:
            self._browser.close()
        finally:
            self._pw.stop()
            PlaywrightDriver._open = None
            log.info("Browser closed")
