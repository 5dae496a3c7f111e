from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path
from typing import List, Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # System
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = True
    DATA_DIR: Path = Path("./data")
    SQLITE_DB_PATH: Optional[Path] = None  # defaults to DATA_DIR / "app.db"

    # Judge
    JUDGE_PROVIDER: str = "openai"  # openai | ollama
    OPENAI_API_KEY: Optional[str] = None
    JUDGE_MODEL: str = "gpt-5.1"
    JUDGE_REASONING_EFFORT: str = "high"
    QUICK_FILTER_REASONING_EFFORT: str = "low"
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "llama3.1"

    # Pipeline
    CONVERSATION_MEMORY: str = "off"  # off | session | persist
    QUICK_FILTER_ENABLED: bool = False
    JUDGE_CALL_DELAY_SECONDS: float = 0.0
    EXCLUDED_AUTHOR: Optional[str] = "kaspaunchained"
    SOURCES: List[str] = ["kaspa_news"]

    # Sources
    KASPA_NEWS_URL: str = "https://kaspa.news/api/kaspa-tweets"
    X_BEARER_TOKEN: Optional[str] = None
    X_SEARCH_QUERY: str = "kaspa -from:kaspaunchained -is:retweet lang:en"
    X_MAX_RESULTS: int = 100

    # Review API
    ADMIN_PASSWORD: Optional[str] = None
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 4000

    @property
    def db_path(self) -> Path:
        return self.SQLITE_DB_PATH or self.DATA_DIR / "app.db"

    def ensure_dirs(self):
        self.DATA_DIR.mkdir(parents=True, exist_ok=True)

settings = Settings()
