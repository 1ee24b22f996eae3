"""Portal automation driver.

The negotiator and calendar page only talk to a ``PortalDriver``; the
Playwright implementation below is the production engine and tests swap in
an in-memory fake. Engine-specific timeouts and errors are translated to
NavigationError here so nothing above this module imports Playwright.
"""

from collections.abc import Sequence
from typing import Protocol

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from src.portal_sync.config import PortalConfig
from src.portal_sync.errors import NavigationError
from src.portal_sync.logging import get_logger
from src.portal_sync.models import SessionState
from src.portal_sync.utils import configure_page_for_scraping

log = get_logger(__name__)

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
]

# Hide navigator.webdriver from the portal's bot checks
_HIDE_WEBDRIVER_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
"""


class PortalDriver(Protocol):
    """Browser capability needed by one sync invocation.

    One driver instance backs exactly one session: ``open_session`` once,
    then ``close`` once.
    """

    async def open_session(self, cookies: SessionState | None = None) -> None: ...

    async def navigate(self, url: str, *, timeout_ms: int) -> None: ...

    def current_url(self) -> str: ...

    async def wait_for(self, selectors: Sequence[str], *, timeout_ms: int) -> str | None:
        """Wait until any selector matches; return the first matching one, or None."""
        ...

    async def fill_field(self, selector: str, value: str) -> None: ...

    async def click(self, selector: str) -> None: ...

    async def wait_for_idle(self, *, timeout_ms: int) -> None: ...

    async def extract_document(self) -> str: ...

    async def cookies(self) -> SessionState: ...

    async def close(self) -> None: ...


class PlaywrightDriver:
    """PortalDriver backed by a headless Chromium via playwright's async API."""

    def __init__(self, config: PortalConfig) -> None:
        self.config = config
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("open_session() has not been called")
        return self._page

    async def open_session(self, cookies: SessionState | None = None) -> None:
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.config.headless,
                args=LAUNCH_ARGS,
                executable_path=self.config.chromium_path or None,
            )
        except PlaywrightError as e:
            raise NavigationError(f"Browser launch failed: {e}") from e

        context_options = {
            "user_agent": self.config.user_agent,
            "viewport": {"width": 1920, "height": 1080},
            "locale": self.config.locale,
            "timezone_id": self.config.timezone_id,
        }
        if cookies:
            context_options["storage_state"] = {"cookies": cookies, "origins": []}

        self._context = await self._browser.new_context(**context_options)
        await self._context.add_init_script(_HIDE_WEBDRIVER_SCRIPT)
        self._page = await self._context.new_page()
        await configure_page_for_scraping(self._page, self.config)
        log.info(
            "context_created",
            type="restored" if cookies else "fresh",
            cookies=len(cookies or []),
        )

    async def navigate(self, url: str, *, timeout_ms: int) -> None:
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Timed out loading {url}") from e
        except PlaywrightError as e:
            raise NavigationError(f"Failed to load {url}: {e}") from e

    def current_url(self) -> str:
        return self.page.url

    async def wait_for(self, selectors: Sequence[str], *, timeout_ms: int) -> str | None:
        combined = ", ".join(selectors)
        try:
            await self.page.locator(combined).first.wait_for(
                state="attached", timeout=timeout_ms
            )
        except PlaywrightTimeoutError:
            return None

        for selector in selectors:
            if await self.page.locator(selector).count() > 0:
                return selector
        return None

    async def fill_field(self, selector: str, value: str) -> None:
        try:
            await self.page.locator(selector).first.fill(value)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Timed out filling {selector}") from e

    async def click(self, selector: str) -> None:
        try:
            await self.page.locator(selector).first.click()
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Timed out clicking {selector}") from e

    async def wait_for_idle(self, *, timeout_ms: int) -> None:
        try:
            await self.page.wait_for_load_state("networkidle", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationError("Timed out waiting for the portal to settle") from e

    async def extract_document(self) -> str:
        return await self.page.content()

    async def cookies(self) -> SessionState:
        if self._context is None:
            return []
        return [dict(cookie) for cookie in await self._context.cookies()]

    async def close(self) -> None:
        browser, playwright = self._browser, self._playwright
        self._browser = None
        self._context = None
        self._page = None
        self._playwright = None
        try:
            if browser is not None:
                await browser.close()
        finally:
            if playwright is not None:
                await playwright.stop()
            log.debug("browser_closed")
