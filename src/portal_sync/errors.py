"""Error hierarchy for school-portal sync failures.

Every failure of one sync invocation is raised as a ScrapingError subclass.
The transient/permanent split lets a caller drive tenacity retries without
knowing the individual error kinds.

Example usage with tenacity:
    @retry(retry=retry_if_exception_type(TransientError), stop=stop_after_attempt(3))
    async def sync(credentials):
        ...
"""


class ScrapingError(Exception):
    """Base exception for all portal sync errors."""

    pass


# The public name used by callers that only care "did the core fail".
CoreError = ScrapingError


class TransientError(ScrapingError):
    """Temporary failure that may succeed on retry.

    Examples: network timeouts, portal unreachable, page slow to render.
    """

    pass


class PermanentError(ScrapingError):
    """Failure that won't succeed on retry.

    Examples: bad caller input, rejected credentials, changed page markup.
    """

    pass


class ConfigurationError(PermanentError):
    """Caller supplied unusable input (e.g. a relative or malformed base URL)."""

    pass


class AuthenticationError(PermanentError):
    """Login was rejected or the login form could not be completed.

    Requires corrected credentials or human investigation, cannot be fixed by retry.
    """

    pass


class NavigationError(TransientError):
    """Portal unreachable or a page failed to load within its timeout."""

    pass


class ParseError(PermanentError):
    """Expected calendar markup is absent - page structure may have changed."""

    pass
