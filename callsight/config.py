import os
from dotenv import load_dotenv

from callsight.errors import ConfigurationError

# Define the path to the root of the project
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
# Load environment variables from the .env file in the project root
load_dotenv(dotenv_path=os.path.join(BASE_DIR, ".env"))


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _list(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class Settings:
    # --- Databases ---
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    CALL_LOG_DATABASE_URL: str = os.getenv("CALL_LOG_DATABASE_URL", "") or DATABASE_URL
    CALL_LOG_TABLE: str = os.getenv("CALL_LOG_TABLE", "reporting.contact_log")

    # --- Transcription engine (AssemblyAI) ---
    ASSEMBLYAI_API_KEY: str = os.getenv("ASSEMBLYAI_API_KEY", "")
    ASSEMBLYAI_BASE_URL: str = os.getenv("ASSEMBLYAI_BASE_URL", "https://api.assemblyai.com/v2")
    SPEAKERS_EXPECTED: int = _int("SPEAKERS_EXPECTED", 2)
    WORD_BOOST: list[str] = _list("WORD_BOOST", "")

    # --- Categorisation and query engine (OpenAI) ---
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    CATEGORISATION_MODEL: str = os.getenv("CATEGORISATION_MODEL", "gpt-4o-mini")
    CATEGORISATION_TIMEOUT_SECONDS: float = _float("CATEGORISATION_TIMEOUT_SECONDS", 20)
    QUERY_MODEL: str = os.getenv("QUERY_MODEL", "gpt-4o")
    QUERY_TIMEOUT_SECONDS: float = _float("QUERY_TIMEOUT_SECONDS", 60)
    QUERY_CONTEXT_CALLS: int = _int("QUERY_CONTEXT_CALLS", 200)

    # --- SFTP recording store ---
    SFTP_HOST: str = os.getenv("SFTP_HOST", "")
    SFTP_PORT: int = _int("SFTP_PORT", 22)
    SFTP_USERNAME: str = os.getenv("SFTP_USERNAME", "")
    SFTP_KEY_PATH: str = os.path.expanduser(os.getenv("SFTP_KEY_PATH", "~/.ssh/sftp_key"))
    SFTP_PASSPHRASE: str = os.getenv("SFTP_PASSPHRASE", "")
    SFTP_PASSWORD: str = os.getenv("SFTP_PASSWORD", "")
    SFTP_RECORDINGS_ROOT: str = os.getenv("SFTP_RECORDINGS_ROOT", ".")
    SFTP_TENANT_PREFIXES: list[str] = _list("SFTP_TENANT_PREFIXES", "amazon-connect-b1a9c08821e5/")
    SFTP_KEEPALIVE_SECONDS: int = _int("SFTP_KEEPALIVE_SECONDS", 30)

    # --- Direct URL strategy ---
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")
    MEDIA_LINK_TTL_SECONDS: int = _int("MEDIA_LINK_TTL_SECONDS", 3600)

    # --- Pipeline tunables ---
    BATCH_SIZE: int = _int("BATCH_SIZE", 3)
    BATCH_DELAY_SECONDS: float = _float("BATCH_DELAY_SECONDS", 5)
    MAX_ATTEMPTS: int = _int("MAX_ATTEMPTS", 3)
    MAX_CYCLES: int = _int("MAX_CYCLES", 10)
    DEFAULT_MAX_PROCESS_COUNT: int = _int("DEFAULT_MAX_PROCESS_COUNT", 3)
    AUTO_PROCESS_COUNT: int = _int("AUTO_PROCESS_COUNT", 10)
    DATE_FALLBACK_DAYS: int = _int("DATE_FALLBACK_DAYS", 7)
    STAT_TIMEOUT_SECONDS: float = _float("STAT_TIMEOUT_SECONDS", 10)
    DOWNLOAD_BASE_TIMEOUT_SECONDS: float = _float("DOWNLOAD_BASE_TIMEOUT_SECONDS", 30)
    DOWNLOAD_SECONDS_PER_MB: float = _float("DOWNLOAD_SECONDS_PER_MB", 10)
    DOWNLOAD_MAX_TIMEOUT_SECONDS: float = _float("DOWNLOAD_MAX_TIMEOUT_SECONDS", 600)
    MIN_RECORDING_BYTES: int = _int("MIN_RECORDING_BYTES", 10_000)
    POLL_INTERVAL_SECONDS: float = _float("POLL_INTERVAL_SECONDS", 5)
    POLL_MAX_ATTEMPTS: int = _int("POLL_MAX_ATTEMPTS", 120)
    HTTP_TIMEOUT_SECONDS: float = _float("HTTP_TIMEOUT_SECONDS", 60)

    # --- Security ---
    API_KEY: str = os.getenv("API_KEY", "")

    # --- Logging ---
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def require(self, *names: str) -> None:
        """Raises ConfigurationError listing every named setting that is empty."""
        missing = [name for name in names if not getattr(self, name, None)]
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")


# Instantiate the settings
settings = Settings()

REQUIRED_AT_STARTUP = (
    "DATABASE_URL",
    "ASSEMBLYAI_API_KEY",
    "OPENAI_API_KEY",
    "SFTP_HOST",
    "SFTP_USERNAME",
    "API_KEY",
)
