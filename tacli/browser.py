"""
Chromium launch helpers shared by stream discovery and manifest download.
Requires: playwright (pip install playwright; then playwright install chromium)
"""

from contextlib import asynccontextmanager
from typing import Optional

from playwright.async_api import async_playwright

from .config import Settings

STEALTH_SCRIPT = """
// Reduce automation signals
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
window.chrome = window.chrome || { runtime: {} };
Object.defineProperty(navigator, 'plugins', {get: () => [1,2,3]});
Object.defineProperty(navigator, 'languages', {get: () => ['en-US', 'en']});
"""


def launch_args(settings: Settings, debug_port: Optional[int] = None):
    """Chromium flags with minimal automation fingerprinting."""
    args = [
        "--no-sandbox",
        "--disable-dev-shm-usage",
        "--disable-blink-features=AutomationControlled",
        "--disable-infobars",
        "--window-size=1920,1080",
    ]
    if debug_port:
        args.append(f"--remote-debugging-port={debug_port}")
    return args


async def new_context(browser, settings: Settings, accept_downloads: bool = False):
    """Create a context that looks like a normal user session."""
    context = await browser.new_context(
        user_agent=settings.user_agent,
        extra_http_headers={"Accept-Language": "tr-TR,tr;q=0.9,en-US;q=0.8,en;q=0.7"},
        ignore_https_errors=True,
        viewport={"width": 1920, "height": 1080},
        locale="tr-TR",
        accept_downloads=accept_downloads,
    )
    try:
        await context.add_init_script(STEALTH_SCRIPT)
    except Exception:
        pass
    return context


@asynccontextmanager
async def browser_session(settings: Settings, *, debug_port: Optional[int] = None, accept_downloads: bool = False):
    """Launch Chromium and yield ``(browser, context, page)``.

    Everything is closed on exit, page first, browser last.
    """
    async with async_playwright() as pw:
        browser = await pw.chromium.launch(
            headless=settings.headless,
            args=launch_args(settings, debug_port),
        )
        try:
            context = await new_context(browser, settings, accept_downloads=accept_downloads)
            page = await context.new_page()
            try:
                yield browser, context, page
            finally:
                try:
                    await page.close()
                except Exception:
                    pass
                await context.close()
        finally:
            await browser.close()
