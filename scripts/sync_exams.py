"""Fetch exam dates from the school portal as JSON, a table, or an SSE stream.

Standalone CLI for the school-portal exam sync. Reuses the cached session file
when present, narrates progress on stderr, and prints the result on stdout.
Saving exams into the family calendar is left to the caller (the JSON output
carries everything needed).

Run with: python scripts/sync_exams.py --url https://school.example.fi/exams/calendar
Debug:    python scripts/sync_exams.py --headed
Table:    python scripts/sync_exams.py --table
Stream:   python scripts/sync_exams.py --sse
Retry:    python scripts/sync_exams.py --retries 3
Fresh:    python scripts/sync_exams.py --fresh

Credentials come from PORTAL_USER / PORTAL_PASS (.env supported).

Exit codes:
  0 = success (JSON, table or SSE frames on stdout)
  1 = error (message on stderr)
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

load_dotenv()

# Add project root to path for src imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from src.portal_sync.channel import ExamSyncStream  # noqa: E402
from src.portal_sync.config import PortalConfig, get_config  # noqa: E402
from src.portal_sync.errors import (  # noqa: E402
    ConfigurationError,
    ScrapingError,
    TransientError,
)
from src.portal_sync.logging import get_logger, setup_logging  # noqa: E402
from src.portal_sync.models import (  # noqa: E402
    Credential,
    ExamRecord,
    ProgressEvent,
    ScrapeResult,
    SessionState,
)

log = get_logger(__name__)


def _log(msg: str) -> None:
    """Write diagnostic messages to stderr so stdout stays clean for JSON."""
    print(msg, file=sys.stderr)


def _parse_args() -> argparse.Namespace:
    """Parse CLI arguments using argparse."""
    parser = argparse.ArgumentParser(
        description="Fetch exam dates from the school portal.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--url",
        type=str,
        default=None,
        help="Portal URL (default: PORTAL_URL from the environment).",
    )
    parser.add_argument(
        "--headed",
        action="store_true",
        help="Launch browser in headed mode (visible window).",
    )
    parser.add_argument(
        "--session-file",
        type=str,
        default=None,
        help="Cookie cache file (default: SESSION_FILE / data/state/portal_session.json).",
    )
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Ignore and overwrite any cached session.",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=1,
        help="Total attempts on transient failures (default: 1, no retry).",
    )

    output_group = parser.add_mutually_exclusive_group()
    output_group.add_argument(
        "--table",
        action="store_true",
        help="Output a human-readable table instead of JSON.",
    )
    output_group.add_argument(
        "--sse",
        action="store_true",
        help="Write progress as server-sent-events frames to stdout.",
    )
    return parser.parse_args()


def _credentials_from(config: PortalConfig) -> Credential:
    """Portal login from PORTAL_USER / PORTAL_PASS; both are required."""
    missing = [
        name
        for name, value in (("PORTAL_USER", config.portal_user), ("PORTAL_PASS", config.portal_pass))
        if not value
    ]
    if missing:
        raise ConfigurationError(f"Missing portal credentials: {', '.join(missing)}")
    return Credential(username=config.portal_user, password=config.portal_pass)


def _load_session(path: Path) -> SessionState | None:
    """Read cached cookies; a missing or unreadable file means no session."""
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        log.warning("session_file_unreadable", path=str(path), error=str(e))
        return None
    cookies = data.get("cookies") if isinstance(data, dict) else None
    return cookies or None


def _save_session(path: Path, cookies: SessionState) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"cookies": cookies}, indent=2), encoding="utf-8")
    log.info("session_saved", path=str(path), cookies=len(cookies))


def _format_event(event: ProgressEvent) -> str:
    return f"  [{event.step.value}] {event.status.value}: {event.message}"


def _format_table(exams: list[ExamRecord] | tuple[ExamRecord, ...]) -> str:
    """Format exams as a human-readable table.

    Columns: Date | Time | Title
    """
    if not exams:
        return "(no exams found)"

    headers = ["Date", "Time", "Title"]
    rows = [[e.date, e.time, e.title] for e in exams]

    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    header_line = " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    separator = "-+-".join("-" * w for w in widths)
    row_lines = [
        " | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)) for row in rows
    ]
    return "\n".join([header_line, separator, *row_lines])


async def _run_once(
    url: str,
    credentials: Credential,
    cached_session: SessionState | None,
    config: PortalConfig,
    sse: bool,
) -> ScrapeResult:
    stream = ExamSyncStream(url, credentials, cached_session, config=config)
    if sse:
        async for frame in stream.sse():
            sys.stdout.write(frame)
            sys.stdout.flush()
    else:
        async for event in stream.events():
            _log(_format_event(event))
    return await stream.result()


async def main(args: argparse.Namespace) -> None:
    config = get_config()
    setup_logging(json_output=config.log_json, log_level=config.log_level)

    url = args.url or config.portal_url
    session_path = Path(args.session_file or config.session_file)

    # Logging out would invalidate the cookies we are about to cache
    config = config.model_copy(
        update={"headless": not args.headed, "logout_after_sync": False}
    )
    credentials = _credentials_from(config)
    cached_session = None if args.fresh else _load_session(session_path)
    if cached_session:
        _log(f"  Loading session from {session_path}")

    _log("sync_exams: starting")

    result: ScrapeResult | None = None
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(args.retries, 1)),
        wait=wait_fixed(5),
        retry=retry_if_exception_type(TransientError),
        reraise=True,
    ):
        with attempt:
            n = attempt.retry_state.attempt_number
            if n > 1:
                _log(f"  Retrying (attempt {n})...")
            result = await _run_once(url, credentials, cached_session, config, args.sse)

    if result.cookies:
        _save_session(session_path, result.cookies)

    if args.table:
        print(_format_table(result.exams))
    elif not args.sse:
        output = [exam.model_dump(mode="json") for exam in result.exams]
        print(json.dumps(output, indent=2, ensure_ascii=False))

    _log(f"sync_exams: done ({len(result.exams)} exams)")


if __name__ == "__main__":
    args = _parse_args()
    try:
        asyncio.run(main(args))
    except ScrapingError as e:
        print(f"ERROR: {type(e).__name__}: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
