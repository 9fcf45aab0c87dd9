"""Exception types shared by the session driver, cache and service layers."""


class Roll20Error(Exception):
    """Base class for all roll20-mapbot errors."""


# ── Session setup ────────────────────────────────────────────────────────────


class SetupFailed(Roll20Error):
    """Launching or relaunching the browser session failed."""


class LoginFailed(SetupFailed):
    """The sign-in sequence on roll20.net failed."""


class WorkspaceNotFound(SetupFailed):
    """No game in the account listing matched the configured game name."""


# ── Extraction ───────────────────────────────────────────────────────────────


class ExtractionFailed(Roll20Error):
    """A map export, journal listing or sheet print step failed."""


class SheetNotFound(ExtractionFailed):
    """No journal entry matched the requested character sheet."""


# ── Cache reads ──────────────────────────────────────────────────────────────


class NotReady(Roll20Error):
    """Nothing has been cached yet for the requested artifact kind."""


class NotFound(Roll20Error):
    """The requested character sheet is not in the current index."""


# ── Configuration ────────────────────────────────────────────────────────────


class ConfigError(Roll20Error):
    """The configuration is invalid; the process must not start."""
