"""CalendarPage - extracts exam dates from the school portal's exam calendar.

DOM structure (one self-contained table per exam):
  table.table-grey
    tr -> td "3.2.2026"  +  td "Sanakoe teksti 7 : ENA.8A ENA02 : Englanti, A1"
    tr -> td "Opettaja"  +  td teacher name
    tr -> td "Kokeen lisätiedot" + td free-text notes

Only the first row of each table is read. The title cell is split on ":";
part 0 is the exam name and the last part is the subject, giving
"Sanakoe teksti 7 (Englanti, A1)". The portal shows no start times, so every
exam is placed at 08:00.
"""

import re
from datetime import date
from urllib.parse import urlsplit

from bs4 import BeautifulSoup, Tag

from src.portal_sync.config import PortalConfig
from src.portal_sync.driver import PortalDriver
from src.portal_sync.errors import NavigationError, ParseError
from src.portal_sync.logging import get_logger
from src.portal_sync.models import ExamRecord, ProgressStep
from src.portal_sync.progress import ProgressReporter
from src.portal_sync.utils import is_login_url

log = get_logger(__name__)

DATE_PATTERN = re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{4})")
TITLE_DELIMITER = ":"
EXAM_TIME = "08:00"


class CalendarPage:
    """Exam calendar page of the school portal."""

    def __init__(
        self, driver: PortalDriver, reporter: ProgressReporter, config: PortalConfig
    ) -> None:
        self.driver = driver
        self.reporter = reporter
        self.config = config

    async def navigate(self, calendar_url: str) -> None:
        """Open the calendar page unless the login redirect already landed on it.

        Raises:
            NavigationError: If the page fails to load, bounces back to the
                login page, or its container markup never appears.
        """
        self.reporter.started(ProgressStep.NAVIGATE, "Opening exam calendar...")
        if not _same_page(self.driver.current_url(), calendar_url):
            await self.driver.navigate(
                calendar_url, timeout_ms=self.config.navigation_timeout_ms
            )

        current_url = self.driver.current_url()
        if is_login_url(current_url, self.config.login_url_pattern):
            raise NavigationError("Calendar redirected back to the login page")

        container = await self.driver.wait_for(
            [self.config.calendar_container_selector],
            timeout_ms=self.config.element_timeout_ms,
        )
        if container is None:
            raise NavigationError(f"Calendar page did not render at {current_url}")

        log.info("calendar_page_navigated", url=current_url)
        self.reporter.success(ProgressStep.NAVIGATE, "Calendar page loaded")

    async def find_exams(self) -> list[ExamRecord]:
        """Wait for exam tables and parse them.

        Raises:
            ParseError: If no exam table appears within the element timeout.
        """
        self.reporter.started(ProgressStep.FIND_EXAMS, "Looking for exam tables...")
        selector = await self.driver.wait_for(
            self.config.exam_table_selectors,
            timeout_ms=self.config.element_timeout_ms,
        )
        if selector is None:
            log.error("exam_tables_missing", selectors=self.config.exam_table_selectors)
            raise ParseError("No exam tables found - page structure may have changed")

        self.reporter.started(
            ProgressStep.FIND_EXAMS, f"Exam tables found ({selector}), parsing..."
        )
        html = await self.driver.extract_document()
        exams = parse_exam_tables(html, selector)

        log.info("exams_extracted", selector=selector, exams=len(exams))
        self.reporter.success(ProgressStep.FIND_EXAMS, f"Found {len(exams)} exams in calendar")
        return exams


def parse_exam_tables(html: str, selector: str = "table") -> list[ExamRecord]:
    """Parse every table matching ``selector`` into at most one ExamRecord each.

    Tables whose first row carries no date (or no title) are not exams and
    are skipped. Document order is preserved.
    """
    soup = BeautifulSoup(html, "html.parser")
    exams: list[ExamRecord] = []
    for table in soup.select(selector):
        exam = parse_exam_table(table)
        if exam is not None:
            exams.append(exam)
    return exams


def parse_exam_table(table: Tag) -> ExamRecord | None:
    first_row = table.find("tr")
    if first_row is None:
        return None
    cells = first_row.find_all("td")
    if len(cells) < 2:
        return None

    exam_date = parse_exam_date(cells[0].get_text(" ", strip=True))
    if exam_date is None:
        return None

    title = parse_exam_title(cells[1].get_text(" ", strip=True))
    if not title:
        return None

    return ExamRecord(title=title, date=exam_date, time=EXAM_TIME)


def parse_exam_date(text: str) -> str | None:
    """Find a D(D).M(M).YYYY token and return it as zero-padded YYYY-MM-DD.

    Returns None when there is no token or it isn't a real calendar date.
    """
    match = DATE_PATTERN.search(text)
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def parse_exam_title(text: str) -> str:
    """Build the exam title from the raw label cell.

    "Sanakoe teksti 7 : ENA.8A ENA02 : Englanti, A1" -> "Sanakoe teksti 7 (Englanti, A1)"
    "Koe" -> "Koe"
    """
    text = " ".join(text.split())
    parts = [part.strip() for part in text.split(TITLE_DELIMITER)]
    title = parts[0]
    if not title:
        return ""
    if len(parts) >= 2 and parts[-1]:
        return f"{title} ({parts[-1]})"
    return title


def _same_page(current: str, target: str) -> bool:
    a, b = urlsplit(current), urlsplit(target)
    return (a.netloc.lower(), a.path.rstrip("/"), a.query) == (
        b.netloc.lower(),
        b.path.rstrip("/"),
        b.query,
    )
