"""Portal sync configuration loaded from environment variables.

Selectors, timeouts and pacing are all overridable per deployment since the
school portal is a third-party site whose markup and URLs can change.
"""

import re

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class PortalConfig(BaseSettings):
    """Portal sync configuration loaded from environment variables.

    Settings are loaded from environment variables with sensible defaults.
    For local development, create a .env file in the project root.
    """

    # Portal settings (browser-only, no API exists)
    portal_url: str = Field(
        default="",
        description="Portal base URL, e.g. https://school.example.fi",
    )
    portal_user: str = Field(
        default="",
        description="Portal username for Playwright login",
    )
    portal_pass: str = Field(
        default="",
        description="Portal password for Playwright login",
    )
    calendar_path: str = Field(
        default="",
        description="Path of the exam calendar relative to portal_url (empty = portal_url itself)",
    )

    # Session detection
    login_url_pattern: str = Field(
        default="login",
        description="Regex searched (case-insensitive) in the current URL to detect the login page",
    )

    # Login form selectors, tried as one OR-group, first match wins
    username_selectors: list[str] = Field(
        default=[
            'input[name="Login"]',
            'input[name="login"]',
            'input[name="username"]',
            'input[name="user"]',
        ],
    )
    password_selectors: list[str] = Field(
        default=[
            'input[name="Password"]',
            'input[name="password"]',
            'input[name="passwd"]',
        ],
    )
    submit_selectors: list[str] = Field(
        default=['input[type="submit"]', 'button[type="submit"]'],
    )

    calendar_container_selector: str = Field(
        default="body",
        description="Element that must exist for the calendar page to count as loaded",
    )

    # Exam calendar selectors, tried in order for the presence check
    exam_table_selectors: list[str] = Field(
        default=[
            "table.table-grey",
            'table[class*="exam"]',
            'table[class*="calendar"]',
            ".exam-table table",
            ".calendar-table table",
        ],
    )

    # Timeouts (milliseconds)
    navigation_timeout_ms: int = Field(default=30000, gt=0)
    element_timeout_ms: int = Field(default=15000, gt=0)
    login_idle_timeout_ms: int = Field(default=15000, gt=0)
    logout_timeout_ms: int = Field(default=5000, gt=0)

    # Human-like pacing between scripted actions (milliseconds)
    fill_delay_min_ms: int = Field(default=100, ge=0)
    fill_delay_max_ms: int = Field(default=500, ge=0)
    submit_delay_min_ms: int = Field(default=500, ge=0)
    submit_delay_max_ms: int = Field(default=1000, ge=0)
    settle_delay_min_ms: int = Field(default=500, ge=0)
    settle_delay_max_ms: int = Field(default=1500, ge=0)

    # Browser
    headless: bool = True
    chromium_path: str | None = Field(
        default=None,
        description="Chromium executable (unset = Playwright's bundled browser)",
    )
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    )
    locale: str = "fi-FI"
    timezone_id: str = "Europe/Helsinki"

    # Behaviour
    logout_after_sync: bool = Field(
        default=True,
        description="Visit <origin>/logout after scraping (invalidates the returned cookies)",
    )
    session_file: str = Field(
        default="data/state/portal_session.json",
        description="Where the CLI caches session cookies between runs",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("login_url_pattern")
    @classmethod
    def _check_login_pattern(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"login_url_pattern is not a valid regex: {e}") from e
        return value

    @model_validator(mode="after")
    def _check_delay_ranges(self) -> "PortalConfig":
        for action in ("fill", "submit", "settle"):
            low = getattr(self, f"{action}_delay_min_ms")
            high = getattr(self, f"{action}_delay_max_ms")
            if low > high:
                raise ValueError(
                    f"{action}_delay_min_ms ({low}) exceeds {action}_delay_max_ms ({high})"
                )
        return self


# Singleton pattern
_config: PortalConfig | None = None


def get_config() -> PortalConfig:
    """Get the portal sync configuration singleton.

    Returns:
        PortalConfig: Portal sync configuration instance
    """
    global _config
    if _config is None:
        _config = PortalConfig()
    return _config
