from typing import Optional

from playwright.async_api import (
    Browser,
    Page,
    Playwright,
    Response,
    Route,
    async_playwright,
)

from common.logger import get_logger

_BROWSER_LAUNCH_ARGS = [
    "--no-sandbox",                 # required in Docker (no privileged mode)
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",      # /dev/shm is tiny in containers, use /tmp
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",                # no GPU in a headless container
]

_VIEWPORT = {"width": 1280, "height": 720}

_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/115.0.0.0 Safari/537.36"
)

_SCREENSHOT_TIMEOUT_MS = 60_000

# Substrings of errors after which the browser itself can no longer be trusted.
FATAL_ERROR_MARKERS = (
    "Protocol error",
    "Session closed",
    "Navigation failed",
    "Target closed",
    "Target page, context or browser has been closed",
    "Browser has been closed",
)


class NavigationError(Exception):
    """The target answered, but with an error status."""

    def __init__(self, status: int, url: str) -> None:
        super().__init__(f"HTTP Error {status} for {url}")
        self.status = status
        self.url = url


def validate_response(response: Optional[Response]) -> None:
    # goto() yields no response for same-document navigations; that is not an error
    if response is not None and response.status >= 400:
        raise NavigationError(response.status, response.url)


def is_fatal_error(exc: BaseException) -> bool:
    message = str(exc)
    return any(marker in message for marker in FATAL_ERROR_MARKERS)


class RenderSessionManager:
    """Owns the one headless Chromium of a capture job.

    Pages are opened in their own browser context, so cookies and storage of
    one target never leak into the next one.
    """

    def __init__(self) -> None:
        self._logger = get_logger(__name__)
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def launch(self) -> None:
        if self._playwright is None:
            self._playwright = await async_playwright().start()

        if self._browser is not None:
            await self._close_browser()

        self._browser = await self._playwright.chromium.launch(
            headless=True,
            args=_BROWSER_LAUNCH_ARGS,
        )
        self._logger.info("Browser launched (%s)", self._browser.version)

    async def recycle(self) -> None:
        self._logger.warning("Restarting browser...")
        await self._close_browser()
        await self.launch()

    async def close(self) -> None:
        await self._close_browser()
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

        self._logger.info("Browser session closed")

    async def _close_browser(self) -> None:
        browser, self._browser = self._browser, None
        if browser is None:
            return
        try:
            await browser.close()
        except Exception:
            # A crashed browser cannot be closed cleanly; it is replaced anyway.
            self._logger.exception("Failed to close the browser")

    def _ensure_started(self) -> Browser:
        if self._browser is None:
            self._logger.error("The browser instance is not initialized")
            raise RuntimeError("RenderSessionManager is not running.")
        return self._browser

    async def new_page(self) -> Page:
        browser = self._ensure_started()

        context = await browser.new_context(
            viewport=_VIEWPORT,
            java_script_enabled=True,
            user_agent=_USER_AGENT,
            accept_downloads=False,
        )
        await context.route("**/*", self._pass_through)

        return await context.new_page()

    @staticmethod
    async def _pass_through(route: Route) -> None:
        await route.continue_()

    @staticmethod
    async def navigate(page: Page, url: str, timeout_ms: int) -> Optional[Response]:
        return await page.goto(url, wait_until="networkidle", timeout=timeout_ms)

    @staticmethod
    async def capture(page: Page) -> bytes:
        return await page.screenshot(
            full_page=True,
            type="png",
            timeout=_SCREENSHOT_TIMEOUT_MS,
        )

    async def close_page(self, page: Page) -> None:
        if page.is_closed():
            return
        try:
            await page.context.close()
        except Exception:
            self._logger.exception("Failed to close the page context")

    async def __aenter__(self) -> "RenderSessionManager":
        await self.launch()
        return self

    async def __aexit__(self, *_) -> None:
        await self.close()
