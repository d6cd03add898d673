"""
browser — Find the real media URL behind a nahnoji/prehrajto player page.

The players only request the .mp4 after the page scripts run, so a headless
Chromium loads the page, optionally clicks play, and sniffs responses.
"""
from __future__ import annotations

from playwright.async_api import Error as PlaywrightError, async_playwright
import structlog

from .config import DEFAULT_USER_AGENT
from .errors import VideoNotFoundError
from .selector import pick_captured_stream

log = structlog.get_logger()

PLAY_SELECTORS = [
    'button:has-text("Přehrát")',
    'button:has-text("Přehrát video")',
    'text=Přehrát video',
    '.play-button',
    '[data-action="play"]',
    '.vjs-big-play-button',
    'button[class*="play"]',
    '.player-play',
]

_VIDEO_SRC_JS = """() => {
    const video = document.querySelector('video');
    if (video && video.src && video.src.includes('.mp4')) return video.src;
    const source = document.querySelector('video source');
    if (source && source.src) return source.src;
    return null;
}"""


def is_media_url(url: str) -> bool:
    return ".mp4" in url.split("?", 1)[0].lower()


def wants_stream(page_url: str, url: str) -> bool:
    """Whether a sniffed response URL is the episode itself and not a preview."""
    if ".mp4" not in url:
        return False
    if "prehrajto" in page_url:
        return "cdn" in url
    return "thumbnail" not in url


async def resolve_video_url(
    page_url: str,
    quality: str = "highest",
    *,
    headless: bool = True,
    timeout_ms: int = 120000,
    user_agent: str = DEFAULT_USER_AGENT,
) -> str:
    """Media URL for a player page; raises VideoNotFoundError when none shows up."""
    captured: list[tuple[str, int]] = []
    prehrajto = "prehrajto" in page_url

    def on_response(response):
        url = response.url
        if not wants_stream(page_url, url) or any(u == url for u, _ in captured):
            return
        try:
            size = int(response.headers.get("content-length") or 0)
        except ValueError:
            size = 0
        captured.append((url, size))
        log.debug("stream_captured", page=page_url, size=size)

    async with async_playwright() as p:
        browser = await p.chromium.launch(
            headless=headless,
            args=["--disable-blink-features=AutomationControlled"],
        )
        try:
            context = await browser.new_context(
                user_agent=user_agent,
                viewport={"width": 1920, "height": 1080},
            )
            page = await context.new_page()
            page.on("response", on_response)

            try:
                await page.goto(
                    page_url,
                    wait_until="domcontentloaded" if prehrajto else "networkidle",
                    timeout=timeout_ms,
                )
            except PlaywrightError as e:
                raise VideoNotFoundError(f"Could not open {page_url}: {e}") from e
            await page.wait_for_timeout(2000)

            if prehrajto:
                for selector in PLAY_SELECTORS:
                    try:
                        button = await page.query_selector(selector)
                        if button:
                            await button.click(timeout=2000)
                            log.debug("play_clicked", selector=selector)
                            break
                    except PlaywrightError:
                        continue
                await page.wait_for_timeout(8000)

            src = await page.evaluate(_VIDEO_SRC_JS)
            if src and all(u != src for u, _ in captured):
                captured.append((src, 0))
        finally:
            await browser.close()

    url = pick_captured_stream(captured, quality)
    if not url:
        raise VideoNotFoundError(f"Could not find video URL on {page_url}")
    log.info("video_url_resolved", page=page_url, candidates=len(captured))
    return url
