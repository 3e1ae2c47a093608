from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Engagement Console"
    debug: bool = False

    # Paths
    db_path: Path = Path(__file__).resolve().parent.parent.parent / "console.db"

    # Chat back-end
    chat_api_url: str = ""  # empty = local-only, nothing is persisted upstream
    chat_api_token: str = ""
    chat_api_timeout: float = 15.0

    # Operator used when a request carries no X-Operator header
    default_operator: str = "You"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent.parent / ".env"),
        "env_prefix": "ENGAGE_",
    }


settings = Settings()
