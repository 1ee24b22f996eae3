"""Session reuse and login for the school portal.

SessionNegotiator opens the browser session (seeded with the caller's cached
cookies), loads the protected calendar page and only logs in when the portal
redirects to its login page. There is no retry loop here: a rejected login
ends the invocation and the caller decides whether to try again.
"""

import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from urllib.parse import urljoin, urlsplit

from src.portal_sync.config import PortalConfig
from src.portal_sync.driver import PortalDriver
from src.portal_sync.errors import AuthenticationError, ConfigurationError
from src.portal_sync.logging import get_logger
from src.portal_sync.models import Credential, ProgressStep, SessionState
from src.portal_sync.progress import ProgressReporter
from src.portal_sync.utils import DelayPolicy, is_login_url

logger = get_logger(__name__)


def build_calendar_url(base_url: str, calendar_path: str = "") -> str:
    """Validate the portal base URL and resolve the exam calendar URL.

    Raises:
        ConfigurationError: If ``base_url`` is not an absolute http(s) URL.
    """
    parts = urlsplit(base_url or "")
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConfigurationError(f"Portal URL must be an absolute http(s) URL, got {base_url!r}")
    if not calendar_path:
        return base_url
    return urljoin(base_url, calendar_path)


def check_login_pattern(pattern: str) -> None:
    """Raise ConfigurationError unless ``pattern`` compiles as a regex.

    Config built with model_copy skips field validation, so the pipeline
    re-checks before any browser is launched.
    """
    try:
        re.compile(pattern)
    except re.error as e:
        raise ConfigurationError(f"Invalid login URL pattern {pattern!r}: {e}") from e

@asynccontextmanager
async def portal_session(driver: PortalDriver) -> AsyncIterator[PortalDriver]:
    """Own ``driver`` for one invocation and close it on every exit path."""
    try:
        yield driver
    finally:
        await driver.close()
        logger.debug("portal_session_released")


@dataclass
class AuthenticatedSession:
    """Outcome of negotiation: the live driver plus the cookies to cache."""

    driver: PortalDriver
    login_performed: bool
    landing_url: str
    cookies: SessionState = field(default_factory=list)


class SessionNegotiator:
    """Decides whether the cached session still works and logs in if not."""

    def __init__(
        self,
        driver: PortalDriver,
        reporter: ProgressReporter,
        config: PortalConfig,
        delays: DelayPolicy | None = None,
    ) -> None:
        self.driver = driver
        self.reporter = reporter
        self.config = config
        self.delays = delays or DelayPolicy.from_config(config)

    def is_login_page(self, url: str) -> bool:
        return is_login_url(url, self.config.login_url_pattern)

    async def open(self, cached_session: SessionState | None = None) -> None:
        """Open the browser context, seeded with cached cookies when present."""
        if cached_session:
            self.reporter.started(
                ProgressStep.INIT, f"Loading {len(cached_session)} saved cookies..."
            )
        else:
            self.reporter.started(ProgressStep.INIT, "Starting browser...")
        await self.driver.open_session(cached_session or None)
        self.reporter.success(ProgressStep.INIT, "Browser and page ready")

    async def negotiate(
        self, calendar_url: str, credentials: Credential
    ) -> AuthenticatedSession:
        """Load the protected page and log in if the portal asks for it.

        Args:
            calendar_url: Protected page used to test the session.
            credentials: Portal username/password.

        Returns:
            AuthenticatedSession positioned on whatever page the portal landed on.

        Raises:
            NavigationError: If the protected page cannot be loaded.
            AuthenticationError: If the login form is missing or rejects the credentials.
        """
        self.reporter.started(ProgressStep.AUTH, f"Checking session at {calendar_url}")
        await self.driver.navigate(calendar_url, timeout_ms=self.config.navigation_timeout_ms)
        await self.delays.pause("settle")

        current_url = self.driver.current_url()
        login_performed = False
        if self.is_login_page(current_url):
            logger.info("session_check", result="login_required", url=current_url)
            self.reporter.started(ProgressStep.AUTH, "Redirected to login page, signing in")
            await self.authenticate(credentials)
            login_performed = True
            current_url = self.driver.current_url()
            self.reporter.success(
                ProgressStep.AUTH, f"Login succeeded, redirected to {current_url}"
            )
        else:
            logger.info("session_check", result="valid", url=current_url)
            self.reporter.success(ProgressStep.AUTH, "Session still valid, reusing saved cookies")

        return AuthenticatedSession(
            driver=self.driver,
            login_performed=login_performed,
            landing_url=current_url,
            cookies=await self.driver.cookies(),
        )

    async def authenticate(self, credentials: Credential) -> None:
        """Fill and submit the login form once, then verify we left the login page.

        Raises:
            AuthenticationError: Form fields/submit control missing, or still on
                the login page after submitting (wrong credentials or changed site).
            NavigationError: If the portal doesn't settle after submitting.
        """
        timeout_ms = self.config.element_timeout_ms
        self.reporter.started(ProgressStep.AUTH, "Looking for the login form...")
        username_field = await self.driver.wait_for(
            self.config.username_selectors, timeout_ms=timeout_ms
        )
        password_field = await self.driver.wait_for(
            self.config.password_selectors, timeout_ms=timeout_ms
        )
        if username_field is None or password_field is None:
            logger.error(
                "login_form_missing",
                username_found=username_field is not None,
                password_found=password_field is not None,
            )
            raise AuthenticationError(
                "Login form not found "
                f"(username field: {username_field is not None}, "
                f"password field: {password_field is not None})"
            )

        self.reporter.started(ProgressStep.AUTH, "Login form found, filling username...")
        await self.driver.fill_field(username_field, credentials.username)
        await self.delays.pause("fill")

        self.reporter.started(ProgressStep.AUTH, "Filling password...")
        await self.driver.fill_field(password_field, credentials.password)
        await self.delays.pause("fill")

        submit = await self.driver.wait_for(self.config.submit_selectors, timeout_ms=timeout_ms)
        if submit is None:
            logger.error("login_submit_missing")
            raise AuthenticationError("Login submit button not found")

        self.reporter.started(ProgressStep.AUTH, "Submitting login form...")
        await self.driver.click(submit)

        self.reporter.started(ProgressStep.AUTH, "Waiting for login to finish...")
        await self.driver.wait_for_idle(timeout_ms=self.config.login_idle_timeout_ms)
        await self.delays.pause("submit")

        final_url = self.driver.current_url()
        if self.is_login_page(final_url):
            logger.error("authentication_failed", reason="still_on_login_page", url=final_url)
            raise AuthenticationError("Login failed - still on login page (check credentials)")

        logger.info("authentication_succeeded", url=final_url)
