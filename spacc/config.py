"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """SPACC audit service settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # Paths
    reports_dir: Path = Path("./data/reports")
    tmp_dir: Path = Path("./data/tmp")

    # Source back-end (document library via Microsoft Graph)
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    graph_access_token: str = ""

    # Target back-end (ACC via APS Data Management)
    aps_base_url: str = "https://developer.api.autodesk.com"
    aps_access_token: str = ""
    aps_hub_id: str = ""

    # Outbound calls
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    download_timeout_seconds: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    retry_max_delay_seconds: float = Field(default=30.0, ge=0)

    # Diff
    mtime_tolerance_ms: int = Field(default=2000, ge=0)

    # Target root marker
    project_files_names: list[str] = Field(
        default_factory=lambda: ["project files", "archivos de proyecto"]
    )
    folder_chain_max_depth: int = Field(default=64, ge=1)

    # Repair
    repair_max_concurrency: int = Field(default=4, ge=1)

    # Progress channel
    progress_throttle_ms: int = Field(default=100, ge=0)
    progress_heartbeat_seconds: float = Field(default=30.0, gt=0)
    progress_completed_grace_seconds: float = Field(default=10.0, ge=0)
    progress_abandoned_grace_seconds: float = Field(default=300.0, ge=0)
    progress_abort_on_disconnect: bool = False

    def validate_runtime_security(self) -> None:
        """Validate settings required for a production start."""
        if self.debug:
            return

        violations: list[str] = []
        if not self.graph_access_token:
            violations.append("GRAPH_ACCESS_TOKEN must be configured")
        if not self.aps_access_token:
            violations.append("APS_ACCESS_TOKEN must be configured")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Incomplete production configuration: {joined}")
