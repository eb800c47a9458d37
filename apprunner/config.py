"""Runner configuration: env-driven via pydantic-settings.

Reads from an ``app.env`` file in the working directory and ``APPRUNNER_*``
environment variables; explicit keyword arguments win over both.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from apprunner.core.downloader import DEFAULT_STAGING_DIR
from apprunner.core.errors import ConfigError


class RunnerConfig(BaseSettings):
    """Configuration for the reconciler and its supervisors.

    Examples
    --------
    Override via environment::

        export APPRUNNER_CONFIG_URL=https://deploy.example.com/manifest.json
        export APPRUNNER_GITHUB_USER=octocat
        export APPRUNNER_RELOAD_INTERVAL=30

    Or via ``app.env``::

        APPRUNNER_CONFIG_URL=https://deploy.example.com/manifest.json
        APPRUNNER_GITHUB_USER=octocat
    """

    model_config = SettingsConfigDict(
        env_file="app.env",
        env_prefix="APPRUNNER_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Manifest source
    config_url: str = ""

    # Trust roots: operator identity whose published keys sign releases,
    # and the only host artifacts may come from.
    github_user: str = ""
    trusted_host: str = "github.com"
    key_api_base: str = "https://api.github.com"

    # Timing (seconds)
    reload_interval: float = 15.0
    health_check_interval: float = 10.0
    request_timeout: float = 30.0
    grace_period: float = 5.0

    # Installed artifacts
    staging_dir: Path = DEFAULT_STAGING_DIR

    log_level: str = "INFO"

    def validate_for_run(self) -> None:
        """Check every setting the ``run`` command depends on.

        Raises
        ------
        ConfigError
            Listing all violations at once.
        """
        violations: list[str] = []
        if not self.config_url:
            violations.append("config_url is not set (APPRUNNER_CONFIG_URL)")
        if not self.github_user:
            violations.append("github_user is not set (APPRUNNER_GITHUB_USER)")
        for name in (
            "reload_interval",
            "health_check_interval",
            "request_timeout",
            "grace_period",
        ):
            if getattr(self, name) <= 0:
                violations.append(f"{name} must be positive")
        if violations:
            raise ConfigError(
                "Invalid configuration:\n" + "\n".join(f"  - {v}" for v in violations)
            )
