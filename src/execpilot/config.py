"""Summary: Application configuration for ExecPilot.

Importance: Centralizes environment, .env, and config defaults for consistent behavior.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Iterable


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds configuration values for storage, identity, surfaces, and AI.

    Importance: Ensures all services derive settings from a single source of truth.
    Alternatives: Store settings in a shared config file and parse at startup.
    """

    db_path: str
    api_host: str
    api_port: int
    api_key: str
    log_level: str
    google_client_id: str
    google_client_secret: str
    oauth_redirect_uri: str
    google_token_url: str
    openai_api_key: str | None
    openai_model: str
    openai_base_url: str
    http_timeout_seconds: float
    ai_timeout_seconds: float
    handled_label: str
    label_prefix: str

    @staticmethod
    def from_env() -> "AppConfig":
        """Summary: Build configuration from defaults, .env, and environment.

        Importance: Keeps all variables defined in config defaults while allowing overrides.
        Alternatives: Parse only environment variables without a defaults file.
        """

        defaults = load_defaults(
            Path("config") / "defaults.json", required=[item.name for item in fields(AppConfig)]
        )
        load_dotenv(Path(".env"))
        return AppConfig(
            db_path=os.getenv("EXECPILOT_DB_PATH", defaults["db_path"]),
            api_host=os.getenv("EXECPILOT_API_HOST", defaults["api_host"]),
            api_port=int(os.getenv("EXECPILOT_API_PORT", defaults["api_port"])),
            api_key=os.getenv("EXECPILOT_API_KEY", defaults["api_key"]),
            log_level=os.getenv("EXECPILOT_LOG_LEVEL", defaults["log_level"]),
            google_client_id=os.getenv("GOOGLE_CLIENT_ID", defaults["google_client_id"]),
            google_client_secret=os.getenv(
                "GOOGLE_CLIENT_SECRET", defaults["google_client_secret"]
            ),
            oauth_redirect_uri=os.getenv(
                "EXECPILOT_OAUTH_REDIRECT_URI", defaults["oauth_redirect_uri"]
            ),
            google_token_url=os.getenv("EXECPILOT_GOOGLE_TOKEN_URL", defaults["google_token_url"]),
            openai_api_key=os.getenv("OPENAI_API_KEY") or defaults["openai_api_key"] or None,
            openai_model=os.getenv("OPENAI_MODEL", defaults["openai_model"]),
            openai_base_url=os.getenv("EXECPILOT_OPENAI_BASE_URL", defaults["openai_base_url"]),
            http_timeout_seconds=float(
                os.getenv("EXECPILOT_HTTP_TIMEOUT", defaults["http_timeout_seconds"])
            ),
            ai_timeout_seconds=float(
                os.getenv("EXECPILOT_AI_TIMEOUT", defaults["ai_timeout_seconds"])
            ),
            handled_label=os.getenv("EXECPILOT_HANDLED_LABEL", defaults["handled_label"]),
            label_prefix=os.getenv("EXECPILOT_LABEL_PREFIX", defaults["label_prefix"]),
        )
def load_defaults(path: Path, required: Iterable[str] = ()) -> dict[str, str]:
    """Summary: Read the defaults file and check it names every required setting.

    Importance: A setting missing from defaults.json fails at startup, not on first use.
    Alternatives: Inline defaults in the AppConfig initializer.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    defaults = json.loads(path.read_text(encoding="utf-8"))
    missing = sorted(set(required) - set(defaults))
    if missing:
        raise ValueError(f"{path} is missing settings: {', '.join(missing)}")
    return defaults


def load_dotenv(path: Path) -> None:
    """Summary: Copy KEY=value lines from a .env file into unset environment variables.

    Importance: Keeps client secrets and API keys out of code for local runs.
    Alternatives: Use python-dotenv or OS-specific secret stores.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export "):]
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip().strip("\"'"))
