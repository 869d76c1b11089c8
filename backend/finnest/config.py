from pathlib import Path
from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    database_url: str = f"sqlite:///{BASE_DIR / 'finnest.db'}"
    log_dir: Path = BASE_DIR / "data" / "logs"

    # Per-user defaults, overridable through User.settings_json
    default_new_per_day: int = 20
    default_retention: float = 0.9

    # Scheduler tuning
    maximum_interval_days: int = 730
    enable_fuzzing: bool = False
    learning_steps_minutes: tuple[float, ...] = (1.0, 10.0)
    relearning_steps_minutes: tuple[float, ...] = (10.0,)

    user_lock_timeout_seconds: float = 10.0
    store_busy_timeout_ms: int = 5000
    supported_languages: tuple[str, ...] = ("FI", "ET")

    model_config = {
        "env_file": [BASE_DIR / ".env", BASE_DIR.parent / ".env"],
        "env_prefix": "FINNEST_",
        "extra": "ignore",
    }


settings = Settings()
