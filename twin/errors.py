"""Exception hierarchy for twin.

Configuration errors are fatal and carry a remediation hint for the CLI.
Everything else is handled where it is raised or feeds the build loop's
retry decisions.
"""

from typing import Optional


class TwinError(Exception):
    """Base class for all twin errors."""


class ConfigurationError(TwinError):
    """Setup problem the user has to fix before a build can run."""

    def __init__(self, message: str, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.hint = hint


class AgentNotFoundError(ConfigurationError):
    """The agent executable could not be launched."""


class LedgerNotFoundError(ConfigurationError):
    """prd.json does not exist."""


class TasteProfileNotFoundError(ConfigurationError):
    """No *.twin file in the global or project directory."""


class LedgerError(TwinError):
    """prd.json exists but cannot be parsed."""


class InvalidTransitionError(TwinError):
    """A story status was moved backwards."""


class LLMError(TwinError):
    """A one-shot model call failed or returned nothing."""


__all__ = [
    "TwinError",
    "ConfigurationError",
    "AgentNotFoundError",
    "LedgerNotFoundError",
    "TasteProfileNotFoundError",
    "LedgerError",
    "InvalidTransitionError",
    "LLMError",
]
