import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        gemini_api_key: str,
        gemini_model: str,
        llm_timeout_secs: float,
        firebase_credentials: str,
        push_timeout_secs: float,
        scheduler_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.gemini_api_key = gemini_api_key
        self.gemini_model = gemini_model
        self.llm_timeout_secs = llm_timeout_secs
        self.firebase_credentials = firebase_credentials
        self.push_timeout_secs = push_timeout_secs
        self.scheduler_enabled = scheduler_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGETWATCH_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budgetwatch.db"
    database_url = os.getenv("BUDGETWATCH_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGETWATCH_TIMEZONE", "Asia/Kolkata")
    gemini_api_key = os.getenv("BUDGETWATCH_GEMINI_API_KEY", "")
    gemini_model = os.getenv("BUDGETWATCH_GEMINI_MODEL", "gemini-2.5-flash")
    llm_timeout_secs = float(os.getenv("BUDGETWATCH_LLM_TIMEOUT_SECS", "30"))
    firebase_credentials = os.getenv("BUDGETWATCH_FIREBASE_CREDENTIALS", "")
    push_timeout_secs = float(os.getenv("BUDGETWATCH_PUSH_TIMEOUT_SECS", "10"))
    scheduler_enabled = os.getenv("BUDGETWATCH_SCHEDULER_ENABLED", "1").lower() in {
        "1",
        "true",
        "yes",
        "on",
    }
    return Settings(
        database_url=database_url,
        timezone=timezone,
        gemini_api_key=gemini_api_key,
        gemini_model=gemini_model,
        llm_timeout_secs=llm_timeout_secs,
        firebase_credentials=firebase_credentials,
        push_timeout_secs=push_timeout_secs,
        scheduler_enabled=scheduler_enabled,
    )
