"""Global configuration — loaded from environment variables."""

from pydantic_settings import BaseSettings

from spawner.types import Strategy


class SpawnerSettings(BaseSettings):
    # Process-wide spawn defaults; unset strategy falls back to the platform
    strategy: Strategy | None = None
    priority: int | None = None
    kill_on_exit: bool = False
    display_name: str | None = None

    # Start isolated processes with os.fork where available; otherwise
    # pipe the pickled work into a fresh `python -m spawner.runner`
    fork: bool = True

    # Tasks get priority -hint (higher = more favoured) unless disabled
    task_priority_inverted: bool = True

    log_level: str = "INFO"

    model_config = {"env_prefix": "SPAWNER_"}


settings = SpawnerSettings()
