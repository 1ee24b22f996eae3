# ==============================================================================
# Shared Test Fixtures
# ==============================================================================
"""
Pytest fixtures shared across all test modules.

Provides:
- FakePortal: an in-memory school portal (login redirect, sessions, calendar markup)
- FakePortalDriver: PortalDriver implementation browsing a FakePortal
- A PortalConfig isolated from the developer's environment/.env
- A zero-delay pacing policy
"""

import asyncio
import secrets
from collections.abc import Sequence
from urllib.parse import quote, urlsplit

import pytest
from bs4 import BeautifulSoup

from src.portal_sync.config import PortalConfig
from src.portal_sync.errors import NavigationError
from src.portal_sync.models import Credential, SessionState
from src.portal_sync.utils import DelayPolicy

BASE_URL = "http://portal.test"
CALENDAR_URL = f"{BASE_URL}/exams/calendar"
VALID_USERNAME = "test.user"
VALID_PASSWORD = "password123"


def exam_table(date_text: str, title_text: str, teacher: str = "Virtanen Maija") -> str:
    return f"""
    <table class="table-grey">
      <tbody>
        <tr><td>{date_text}</td><td>{title_text}</td></tr>
        <tr><td>Opettaja</td><td>{teacher}</td></tr>
        <tr><td>Kokeen lisätiedot</td><td>Kertaa kappaleet 1-3.</td></tr>
      </tbody>
    </table>
    """


CALENDAR_HTML = f"""
<!DOCTYPE html>
<html lang="fi">
<body>
  <a id="logout-button" href="/logout">Kirjaudu ulos</a>
  <h1>Kokeet - Kalenteri</h1>
  {exam_table("3.2.2026", "Sanakoe teksti 7 : ENA.8A ENA02 : Englanti, A1")}
  {exam_table("19.2.2026", "Jaksollinen järjestelmä : KE.8A KE02 : Kemia", "Lahtinen Pekka")}
  {exam_table("27.3.2026", "Valtiovertailun palautuspäivä : MAA.8A MAA03 : Maantieto")}
</body>
</html>
"""

EXPECTED_EXAMS = [
    ("Sanakoe teksti 7 (Englanti, A1)", "2026-02-03"),
    ("Jaksollinen järjestelmä (Kemia)", "2026-02-19"),
    ("Valtiovertailun palautuspäivä (Maantieto)", "2026-03-27"),
]

EMPTY_CALENDAR_HTML = """
<html><body><h1>Kokeet - Kalenteri</h1><p>Ei tulevia kokeita.</p></body></html>
"""


def login_html(error: str | None = None) -> str:
    message = f'<div class="error">{error}</div>' if error else ""
    return f"""
    <html><body>
      <h1>Kirjaudu sisään</h1>
      {message}
      <form method="POST" action="/login">
        <input type="text" name="Login">
        <input type="password" name="Password">
        <button type="submit">Kirjaudu</button>
      </form>
    </body></html>
    """


class FakePortal:
    """Server-side state of the simulated school portal."""

    def __init__(
        self,
        calendar_html: str = CALENDAR_HTML,
        *,
        never_redirect: bool = False,
        unreachable: bool = False,
        login_page_html: str | None = None,
    ) -> None:
        self.calendar_html = calendar_html
        self.never_redirect = never_redirect
        self.unreachable = unreachable
        self.login_page_html = login_page_html
        self.sessions: set[str] = set()
        self.login_attempts = 0
        self.logouts = 0

    def login(self, username: str | None, password: str | None) -> str | None:
        self.login_attempts += 1
        if username != VALID_USERNAME or password != VALID_PASSWORD:
            return None
        token = "sess_" + secrets.token_hex(6)
        self.sessions.add(token)
        return token


class FakePortalDriver:
    """PortalDriver that browses a FakePortal instead of a real browser."""

    def __init__(self, portal: FakePortal, *, block_navigation: bool = False) -> None:
        self.portal = portal
        self.block_navigation = block_navigation
        self.opened = 0
        self.closed = 0
        self.seeded_cookies: SessionState | None = None
        self.visited: list[str] = []
        self.filled: dict[str, str] = {}
        self._jar: SessionState = []
        self._url = "about:blank"
        self._document = "<html><body></body></html>"

    # -- PortalDriver -------------------------------------------------------

    async def open_session(self, cookies: SessionState | None = None) -> None:
        self.opened += 1
        self.seeded_cookies = cookies
        self._jar = [dict(c) for c in cookies or []]

    async def navigate(self, url: str, *, timeout_ms: int) -> None:
        self.visited.append(url)
        if self.block_navigation:
            await asyncio.Event().wait()
        if self.portal.unreachable:
            raise NavigationError(f"Timed out loading {url}")

        path = urlsplit(url).path
        if path == "/logout":
            self.portal.sessions.difference_update(c["value"] for c in self._jar)
            self.portal.logouts += 1
            self._jar = []
            self._show(f"{BASE_URL}/login", login_html())
        elif self._authenticated():
            self._show(url, self.portal.calendar_html)
        else:
            self._show(f"{BASE_URL}/login?returnpath={quote(path, safe='')}", self._login_page())

    def current_url(self) -> str:
        return self._url

    async def wait_for(self, selectors: Sequence[str], *, timeout_ms: int) -> str | None:
        soup = BeautifulSoup(self._document, "html.parser")
        for selector in selectors:
            if soup.select_one(selector) is not None:
                return selector
        return None

    async def fill_field(self, selector: str, value: str) -> None:
        self.filled[selector] = value

    async def click(self, selector: str) -> None:
        token = self.portal.login(
            self.filled.get('input[name="Login"]'),
            self.filled.get('input[name="Password"]'),
        )
        if token is None:
            self._show(self._url, login_html("Invalid username or password"))
            return
        self._jar = [{"name": "session_id", "value": token, "domain": "portal.test", "path": "/"}]
        self._show(CALENDAR_URL, self.portal.calendar_html)

    async def wait_for_idle(self, *, timeout_ms: int) -> None:
        return None

    async def extract_document(self) -> str:
        return self._document

    async def cookies(self) -> SessionState:
        return [dict(c) for c in self._jar]

    async def close(self) -> None:
        self.closed += 1

    # -- helpers ------------------------------------------------------------

    def _authenticated(self) -> bool:
        if self.portal.never_redirect:
            return True
        return any(c.get("value") in self.portal.sessions for c in self._jar)

    def _login_page(self) -> str:
        return self.portal.login_page_html or login_html()

    def _show(self, url: str, document: str) -> None:
        self._url = url
        self._document = document


@pytest.fixture()
def config():
    """PortalConfig that ignores any .env file and skips logout."""
    return PortalConfig(_env_file=None, logout_after_sync=False)


@pytest.fixture()
def no_delays():
    return DelayPolicy.none()


@pytest.fixture()
def credentials():
    return Credential(username=VALID_USERNAME, password=VALID_PASSWORD)


@pytest.fixture()
def wrong_credentials():
    return Credential(username=VALID_USERNAME, password="nope")


@pytest.fixture()
def portal():
    return FakePortal()


@pytest.fixture()
def driver(portal):
    return FakePortalDriver(portal)
