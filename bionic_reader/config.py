from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    storage_backend: Literal["memory", "firestore"] = "memory"
    firebase_credentials_path: str = "firebase-credentials.json"
    firestore_collection: str = "reader_preferences"

    query_timeout_seconds: float = 1.0
    mutation_debounce_ms: int = 50

    file_access_granted: bool = False
    browser_target: str = "chrome"
    permission_page_url: str = "chrome://extensions/?id=jjjipoongdlfeenlicdoeadmabalokca"

    log_level: str = "INFO"


settings = Settings()
