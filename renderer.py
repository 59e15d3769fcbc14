"""
renderer.py
───────────
Headless Chromium rendering via Playwright.

``Renderer.render(url, timeout)`` loads ``url`` in an isolated browser
session, waits for the network to go idle, gives client-side code a short
settle delay to finish mutating the DOM, and returns the serialised
document.

Isolation
─────────
Every render owns its session exclusively:

  • default        a fresh Chromium process is launched for the render and
                   shut down afterwards (``async with async_playwright()``).
  • shared browser with ``RENDER_SHARED_BROWSER=true`` one Chromium process
                   is started in the lifespan and each render opens its own
                   ``BrowserContext`` on it.  A context has its own cookies,
                   storage and HTTP cache, so renders never see each other.

Contexts and browsers are closed in ``finally`` blocks on every exit path.

If the shared Chromium process goes away (crash, OOM kill) it is detached on
the next render and the renderer goes back to launching per render.

Failures
────────
Launch errors, navigation errors, timeouts and a missing Playwright install
all come back as ``RenderFailed(cause)``.  ``render`` never raises and never
returns partial markup.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Union

from logging_config import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Browser, Playwright

    from config import PrerenderConfig

logger = get_logger(__name__)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

# Head-room for browser launch and teardown on top of navigation + settle
_LAUNCH_GRACE = 15.0


@dataclass(frozen=True)
class Rendered:
    markup: str


@dataclass(frozen=True)
class RenderFailed:
    cause: str


RenderResult = Union[Rendered, RenderFailed]


async def _close_quietly(resource: Any, what: str) -> None:
    try:
        await resource.close()
    except Exception as exc:  # noqa: BLE001
        logger.warning("playwright_close_error", resource=what, error=str(exc))


class Renderer:
    def __init__(
        self,
        viewport:       dict[str, int],
        user_agent:     str,
        settle_delay:   float = 1.0,
        shared_browser: bool  = False,
    ) -> None:
        self._viewport       = dict(viewport)
        self._user_agent     = user_agent
        self._settle_delay   = settle_delay
        self._shared_browser = shared_browser
        self._pw:      Optional["Playwright"] = None
        self._browser: Optional["Browser"]    = None

    @classmethod
    def from_config(cls, config: "PrerenderConfig") -> "Renderer":
        return cls(
            viewport=config.viewport,
            user_agent=config.user_agent,
            settle_delay=config.settle_delay,
            shared_browser=config.shared_browser,
        )

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    @property
    def shared(self) -> bool:
        return self._browser is not None

    def attach_browser(self, browser: "Browser") -> None:
        """Render in contexts of ``browser`` instead of launching per call."""
        self._browser = browser
        logger.info("playwright_browser_registered")

    async def start(self) -> None:
        """
        Launch the shared browser when configured.

        A failed launch is logged and the renderer falls back to one browser
        process per render.
        """
        if not self._shared_browser or self._browser is not None:
            return
        try:
            from playwright.async_api import async_playwright

            self._pw = await async_playwright().start()
            self.attach_browser(
                await self._pw.chromium.launch(headless=True, args=LAUNCH_ARGS)
            )
            logger.info("playwright_ready", browser="chromium", mode="shared")
        except ImportError:
            logger.warning(
                "playwright_not_installed",
                detail="Renders will fail until playwright is installed.",
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "playwright_launch_failed",
                error=str(exc),
                detail="Falling back to per-render launch.",
            )
            await self.close()

    async def close(self) -> None:
        browser, self._browser = self._browser, None
        pw, self._pw = self._pw, None
        if browser is not None:
            await _close_quietly(browser, "browser")
            logger.info("playwright_browser_closed")
        if pw is not None:
            try:
                await pw.stop()
                logger.info("playwright_stopped")
            except Exception as exc:  # noqa: BLE001
                logger.warning("playwright_stop_error", error=str(exc))

    # ── Rendering ─────────────────────────────────────────────────────────────

    def _live_browser(self) -> Optional["Browser"]:
        browser = self._browser
        if browser is not None and not browser.is_connected():
            logger.warning(
                "playwright_browser_disconnected",
                detail="Falling back to per-render launch.",
            )
            self._browser = None
            return None
        return browser

    async def render(self, url: str, timeout: float) -> RenderResult:
        started = time.monotonic()
        browser = self._live_browser()
        mode = "shared" if browser is not None else "launch"
        deadline = timeout + self._settle_delay + _LAUNCH_GRACE
        try:
            if browser is not None:
                coro = self._render_in_context(browser, url, timeout)
            else:
                coro = self._render_with_launch(url, timeout)
            markup = await asyncio.wait_for(coro, timeout=deadline)
        except ImportError:
            cause = "playwright is not installed"
            logger.error("render_failed", url=url, mode=mode, error=cause)
            return RenderFailed(cause)
        except asyncio.TimeoutError:
            cause = f"render exceeded {deadline:.1f}s"
            logger.error("render_failed", url=url, mode=mode, error=cause)
            return RenderFailed(cause)
        except Exception as exc:  # noqa: BLE001
            cause = f"{type(exc).__name__}: {exc}"
            logger.error("render_failed", url=url, mode=mode, error=cause)
            return RenderFailed(cause)

        logger.info(
            "render_done",
            url=url,
            mode=mode,
            bytes=len(markup),
            elapsed_ms=round((time.monotonic() - started) * 1000),
        )
        return Rendered(markup)

    async def _render_in_context(self, browser: "Browser", url: str, timeout: float) -> str:
        context = await browser.new_context(
            viewport=self._viewport,
            user_agent=self._user_agent,
        )
        try:
            page = await context.new_page()
            await page.goto(url, wait_until="networkidle", timeout=timeout * 1000)
            if self._settle_delay > 0:
                await page.wait_for_timeout(self._settle_delay * 1000)
            return await page.content()
        finally:
            await _close_quietly(context, "context")

    async def _render_with_launch(self, url: str, timeout: float) -> str:
        from playwright.async_api import async_playwright

        async with async_playwright() as pw:
            browser = await pw.chromium.launch(headless=True, args=LAUNCH_ARGS)
            try:
                return await self._render_in_context(browser, url, timeout)
            finally:
                await _close_quietly(browser, "browser")
