"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes callers may map the pipeline outcome to.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    PARTIAL_FAILURE = 3
    RESOLUTION_ERROR = 4
    LOCKED = 5


class PrereleasePolicy(Enum):
    """How pre-release versions are treated during candidate selection.

    Args:
        Enum (string): Policy names as accepted in configuration files.
    """

    EXCLUDE = "exclude"
    ALLOW = "allow"
    IF_NECESSARY = "if-necessary"


class SourceOrigin(Enum):
    """Where a candidate artifact comes from."""

    INDEX = "index"
    DIRECT = "direct"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration defaults; not intended to provide behavior.
    """

    INDEX_URL = "https://pypi.org/pypi/"
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    LOG_LEVEL_ENV = "PYPACKAGE_LOG_LEVEL"
    ENV_PREFIX = "PYPACKAGE_"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for every network operation

    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 0.3
    INDEX_PREFETCH_WORKERS = 8

    DOWNLOAD_CONCURRENCY = 4
    DOWNLOAD_RETRY_MAX = 3
    DOWNLOAD_BACKOFF_BASE_SEC = 0.5
    DOWNLOAD_CHUNK_SIZE = 64 * 1024
    REQUIRE_DIGEST = True
    DIGEST_ALGORITHM = "sha256"

    MAX_ARCHIVE_BYTES = 512 * 1024 * 1024  # Decompressed size ceiling

    LOCK_WAIT = True
    LOCK_TIMEOUT_SEC = 30.0
    LOCK_POLL_INTERVAL_SEC = 0.1

    PYPACKAGES_DIR = "__pypackages__"
    LIB_DIR = "lib"
    STAGING_DIR = ".staging"
    TRASH_DIR = ".trash"
    DOWNLOADS_DIR = ".downloads"
    LOCK_FILE_NAME = ".lock"
    INSTALLED_RECORD = "INSTALLED.json"
    LOCKFILE_NAME = "pypackage.lock"
    LOCKFILE_VERSION = 1
    PYPROJECT_TOML_FILE = "pyproject.toml"
    REQUIREMENTS_FILE = "requirements.txt"
    TOOL_SECTION = "pypackage"
    USER_AGENT = "pypackage/0.1"
