"""One exam-sync invocation: init -> auth -> navigate -> find_exams -> save -> complete.

``run_exam_sync`` is the only entry point callers need. It holds no state
between calls: the cached session comes in as an argument and the refreshed
cookies go back out in the ScrapeResult, for the caller to persist.
"""

import asyncio
from urllib.parse import urlsplit

from src.portal_sync.config import PortalConfig, get_config
from src.portal_sync.driver import PlaywrightDriver, PortalDriver
from src.portal_sync.errors import NavigationError, ScrapingError
from src.portal_sync.logging import bind_sync_id, clear_sync_id, get_logger
from src.portal_sync.models import Credential, ProgressStep, ScrapeResult, SessionState
from src.portal_sync.pages.calendar import CalendarPage
from src.portal_sync.progress import ProgressReporter, ProgressSink
from src.portal_sync.session import (
    SessionNegotiator,
    build_calendar_url,
    check_login_pattern,
    portal_session,
)
from src.portal_sync.utils import DelayPolicy

log = get_logger(__name__)


async def run_exam_sync(
    base_url: str,
    credentials: Credential,
    cached_session: SessionState | None = None,
    on_progress: ProgressSink | None = None,
    *,
    config: PortalConfig | None = None,
    driver: PortalDriver | None = None,
    delays: DelayPolicy | None = None,
) -> ScrapeResult:
    """Fetch exam dates from the school portal.

    Every event is delivered to ``on_progress`` in order, and the sequence
    always ends with either a ``complete`` event or one ``error`` event.
    The browser session is closed on every exit path.

    Args:
        base_url: Absolute portal URL (the calendar page unless config.calendar_path is set).
        credentials: Portal login for this attempt.
        cached_session: Cookies returned by a previous invocation, if any.
        on_progress: Called synchronously with each ProgressEvent.
        config: Portal settings (default: environment via get_config()).
        driver: Automation driver (default: a fresh PlaywrightDriver).
        delays: Pacing between scripted actions (default: from config).

    Returns:
        ScrapeResult with the parsed exams and the session cookies to cache.

    Raises:
        ConfigurationError: base_url is not an absolute http(s) URL, or
            config.login_url_pattern is not a valid regex.
        AuthenticationError: Login rejected or login form missing.
        NavigationError: Portal unreachable, timeouts, or any unexpected failure.
        ParseError: No exam tables on the calendar page.
    """
    config = config or get_config()
    delays = delays or DelayPolicy.from_config(config)
    reporter = ProgressReporter(on_progress)

    bind_sync_id()
    log.info("exam_sync_started", base_url=base_url, cached_cookies=len(cached_session or []))

    try:
        reporter.started(ProgressStep.INIT, "Validating portal address...")
        calendar_url = build_calendar_url(base_url, config.calendar_path)
        check_login_pattern(config.login_url_pattern)
        driver = driver or PlaywrightDriver(config)

        async with portal_session(driver):
            negotiator = SessionNegotiator(driver, reporter, config, delays)
            await negotiator.open(cached_session)
            session = await negotiator.negotiate(calendar_url, credentials)

            page = CalendarPage(driver, reporter, config)
            await page.navigate(calendar_url)
            exams = await page.find_exams()

            reporter.started(
                ProgressStep.SAVE, f"Handing {len(exams)} exams over for saving..."
            )
            cookies = await driver.cookies() or session.cookies
            if config.logout_after_sync:
                await _logout(driver, reporter, config)
            reporter.success(ProgressStep.SAVE, f"{len(exams)} exams ready")

        result = ScrapeResult(exams=tuple(exams), cookies=cookies)
        log.info(
            "exam_sync_completed",
            exams=len(result.exams),
            login_performed=session.login_performed,
        )
        reporter.complete(f"Done! {len(result.exams)} exams returned")
        return result

    except ScrapingError as e:
        log.warning(
            "exam_sync_failed",
            step=reporter.current_step.value,
            error=str(e),
            type=type(e).__name__,
        )
        reporter.fail(str(e))
        raise
    except asyncio.CancelledError:
        log.warning("exam_sync_cancelled", step=reporter.current_step.value)
        reporter.fail("Sync cancelled")
        raise
    except Exception as e:
        # Unclassified failures are treated as transient so callers may retry
        log.error(
            "exam_sync_error",
            step=reporter.current_step.value,
            error=str(e),
            type=type(e).__name__,
        )
        reporter.fail(f"Unexpected error: {e}")
        raise NavigationError(f"Exam sync failed: {e}") from e
    finally:
        clear_sync_id()


async def _logout(
    driver: PortalDriver, reporter: ProgressReporter, config: PortalConfig
) -> None:
    """Best-effort logout so the portal doesn't warn about parallel sessions."""
    parts = urlsplit(driver.current_url())
    logout_url = f"{parts.scheme}://{parts.netloc}/logout"
    reporter.started(ProgressStep.SAVE, "Logging out...")
    try:
        await driver.navigate(logout_url, timeout_ms=config.logout_timeout_ms)
    except NavigationError as e:
        log.info("logout_skipped", url=logout_url, error=str(e))
        reporter.started(ProgressStep.SAVE, "Logout skipped (not critical)")
        return
    reporter.started(ProgressStep.SAVE, "Logged out")
