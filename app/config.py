"""
Application configuration
"""
from release_orchestrator.config import OrchestratorSettings  # type: ignore


class Settings(OrchestratorSettings):
    """Application settings"""

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080
    API_TITLE: str = "Release Orchestrator API"
    API_VERSION: str = "1.0.0"

    # Local publishing (unset = publish to GitHub with GITHUB_TOKEN)
    PUBLISH_DIR: str | None = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
