import os
import re
from typing import Final, Iterable, List, Optional

# --- CONSTANTS ---
# Values above this are millisecond timestamps. Second-precision epoch time
# only reaches 10^12 around the year 33658.
MILLIS_THRESHOLD: Final[int] = 1000000000000
# Keys shorter than this are empty or single-character garbage.
MIN_KEY_LENGTH: Final[int] = 2

DEFAULT_DB_PATH: Final[str] = "openfair.db"
DEFAULT_RULE_SET: Final[str] = "ofdb"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def get_db_path() -> str:
    return os.environ.get("OFDB_DB_PATH", DEFAULT_DB_PATH)


# --- EXCEPTIONS ---
class CleanupException(Exception):
    """Base exception for all cleanup errors."""
    pass


class ConfigurationError(CleanupException):
    """A rule set, identifier or option is unusable."""
    pass


class StoreConnectionError(CleanupException, ConnectionError):
    """The store could not be opened or a transaction could not begin."""
    def __init__(self, db_path: str, message: str, cause: Optional[BaseException] = None):
        self.db_path = db_path
        self.cause = cause
        super().__init__(f"[{db_path}] {message}")


class RuleExecutionError(CleanupException):
    def __init__(self, index: int, description: str, cause: BaseException):
        self.index = index
        self.description = description
        self.cause = cause
        super().__init__(f"Rule #{index} '{description}' failed: {cause}")


class CommitError(CleanupException):
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(f"{message}: {cause}" if cause else message)


# --- SQL IDENTIFIERS ---
def is_identifier(name: str) -> bool:
    return isinstance(name, str) and _IDENTIFIER_RE.match(name) is not None


def quote_identifier(name: str) -> str:
    """Double-quote a table or column name after checking it is a plain identifier.

    Identifiers cannot be bound as statement parameters, so anything that is
    not ``[A-Za-z_][A-Za-z0-9_]*`` is rejected outright.
    """
    if not is_identifier(name):
        raise ConfigurationError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


def quote_identifiers(names: Iterable[str]) -> List[str]:
    return [quote_identifier(n) for n in names]
