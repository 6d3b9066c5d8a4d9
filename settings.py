import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

ROOT_DIR = Path(__file__).resolve().parent


class Settings(BaseModel):
    output_dir: Path = ROOT_DIR / "output"
    assets_dir: Path = ROOT_DIR / "assets"
    fonts_dir: Path = ROOT_DIR / "fonts"
    templates_dir: Path = ROOT_DIR / "templates_store"
    workers: int = Field(default=2, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=2.0, ge=0)
    log_level: str = "INFO"


def _env_path(name: str, default: Path) -> Path:
    value = os.environ.get(name)
    if not value:
        return default
    path = Path(value)
    return path if path.is_absolute() else ROOT_DIR / path


@lru_cache
def get_settings() -> Settings:
    # .env values only fill in variables the process did not already set.
    load_dotenv()
    defaults = Settings()
    return Settings(
        output_dir=_env_path("CERTGEN_OUTPUT_DIR", defaults.output_dir),
        assets_dir=_env_path("CERTGEN_ASSETS_DIR", defaults.assets_dir),
        fonts_dir=_env_path("CERTGEN_FONTS_DIR", defaults.fonts_dir),
        templates_dir=_env_path("CERTGEN_TEMPLATES_DIR", defaults.templates_dir),
        workers=int(os.environ.get("CERTGEN_WORKERS", defaults.workers)),
        max_attempts=int(os.environ.get("CERTGEN_MAX_ATTEMPTS", defaults.max_attempts)),
        backoff_seconds=float(os.environ.get("CERTGEN_BACKOFF_SECONDS", defaults.backoff_seconds)),
        log_level=os.environ.get("CERTGEN_LOG_LEVEL", defaults.log_level).upper(),
    )


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=level or get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
