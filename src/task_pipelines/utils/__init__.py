"""Logging, environment, and seeding helpers."""

from .env import env_setting, load_repo_dotenv
from .logging import LOG_FORMAT, configure_logging, resolve_level
from .random import make_generator, seed_everything

__all__ = [
    "LOG_FORMAT",
    "configure_logging",
    "env_setting",
    "load_repo_dotenv",
    "make_generator",
    "resolve_level",
    "seed_everything",
]
