"""Shared scraping utilities: human-like pacing, login detection, page setup."""

import asyncio
import random
import re
from dataclasses import dataclass, field

from playwright.async_api import Page, Route

from src.portal_sync.config import PortalConfig
from src.portal_sync.logging import get_logger

log = get_logger(__name__)

BLOCKED_RESOURCE_TYPES: frozenset[str] = frozenset({"image", "font", "media"})


@dataclass(frozen=True)
class DelayPolicy:
    """Randomized pauses between scripted actions, per action class.

    ``ranges`` maps an action class ("fill", "submit", "settle") to a
    (min_ms, max_ms) pair. Unknown action classes do not pause.
    """

    ranges: dict[str, tuple[int, int]] = field(default_factory=dict)
    rng: random.Random = field(default_factory=random.Random, compare=False)

    @classmethod
    def from_config(cls, config: PortalConfig) -> "DelayPolicy":
        return cls(
            ranges={
                "fill": (config.fill_delay_min_ms, config.fill_delay_max_ms),
                "submit": (config.submit_delay_min_ms, config.submit_delay_max_ms),
                "settle": (config.settle_delay_min_ms, config.settle_delay_max_ms),
            }
        )

    @classmethod
    def none(cls) -> "DelayPolicy":
        """Policy that never sleeps (tests, local mock portals)."""
        return cls()

    def pick_ms(self, action: str) -> int:
        low, high = self.ranges.get(action, (0, 0))
        if high <= 0:
            return 0
        return self.rng.randint(low, high)

    async def pause(self, action: str) -> None:
        delay_ms = self.pick_ms(action)
        if delay_ms:
            await asyncio.sleep(delay_ms / 1000)


def is_login_url(url: str, pattern: str) -> bool:
    """True if ``url`` looks like the portal's login page.

    The portal has no "is this session valid" API, so a redirect to a URL
    matching ``pattern`` is the only signal that the session is gone.
    """
    return re.search(pattern, url, re.IGNORECASE) is not None


async def configure_page_for_scraping(page: Page, config: PortalConfig) -> None:
    """Set up a Playwright page for scraping the portal.

    Blocks images, fonts and media to reduce bandwidth, and applies the
    configured navigation/element timeouts as page defaults so no wait can
    hang indefinitely.

    Args:
        page: Playwright Page instance.
        config: Portal configuration supplying the timeouts.
    """

    async def _block_resources(route: Route) -> None:
        if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
            await route.abort()
        else:
            await route.continue_()

    await page.route("**/*", _block_resources)
    page.set_default_timeout(config.element_timeout_ms)
    page.set_default_navigation_timeout(config.navigation_timeout_ms)
