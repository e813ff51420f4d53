"""
Orchestrator configuration
"""
from typing import List, Optional

from pydantic_settings import BaseSettings


class OrchestratorSettings(BaseSettings):
    """Orchestrator settings, sourced from the environment and ``.env``."""

    # Release hosting (GitHub Releases)
    GITHUB_TOKEN: Optional[str] = None
    GITHUB_REPOSITORY: str = "mmdriley/llvmbuilds"
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_UPLOADS_URL: str = "https://uploads.github.com"
    GITHUB_SERVER_URL: str = "https://github.com"
    GITHUB_RUN_ID: Optional[str] = None
    GITHUB_RUN_NUMBER: int = 0
    GITHUB_REF: str = "refs/heads/dev"
    PUBLISH_TIMEOUT: float = 300.0  # seconds, per HTTP request

    # Branch policy
    PRIMARY_BRANCH: str = "main"

    # Source tree
    SOURCE_REPOSITORY: str = "llvm/llvm-project"
    SOURCE_URL_TEMPLATE: str = "https://github.com/{repository}.git"
    SOURCE_REF_FILE: str = "llvm-commit.txt"
    BUILD_SETTINGS_FILE: str = "BuildSettings.txt"

    # Platforms (comma separated platform ids from the profile)
    PLATFORMS: str = "linux,macos,windows"

    # Filesystem
    WORKSPACE_ROOT: str = "/tmp/release_builds"
    ARTIFACTS_PATH: str = "/files/artifacts"

    # Timeouts
    STEP_TIMEOUT: int = 6 * 3600  # seconds, per build-tool invocation
    RUN_TIMEOUT: float = 8 * 3600.0  # seconds, coordinator wait

    @property
    def platform_ids(self) -> List[str]:
        """Configured platform ids, in order, without blanks."""
        return [p.strip() for p in self.PLATFORMS.split(",") if p.strip()]

    @property
    def logs_url(self) -> Optional[str]:
        """Link to the hosting service's run logs, if a run id is known."""
        if not self.GITHUB_RUN_ID:
            return None
        return f"{self.GITHUB_SERVER_URL}/{self.GITHUB_REPOSITORY}/actions/runs/{self.GITHUB_RUN_ID}"

    def source_url(self, repository: Optional[str] = None) -> str:
        """Clone URL for the source repository."""
        return self.SOURCE_URL_TEMPLATE.format(repository=repository or self.SOURCE_REPOSITORY)

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"
