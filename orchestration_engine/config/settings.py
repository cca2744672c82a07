#orchestration_engine\config\settings.py

from typing import Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class OrchestratorSettings(BaseSettings):
    """Process-level configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="ORCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Durable store / mailbox database
    database_url: str = "sqlite:///orchestrator-state.db"
    echo_sql: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_recycle: int = 3600

    # Topology
    root_node_id: str = "home"
    primary_node_id: str = "home"
    topology_file: Optional[str] = None
    agent_urls: Dict[str, str] = {}
    admission_token: Optional[str] = None
    # Capacity of the single local node when no topology is configured
    local_capacity: float = 64.0
    payloads: List[str] = []

    # Modules
    modules_manifest: Optional[str] = None
    mailbox_capacity: int = 50

    log_level: str = "INFO"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


settings = OrchestratorSettings()
