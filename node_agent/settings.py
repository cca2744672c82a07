#node_agent\settings.py

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentSettings(BaseSettings):
    """Per-node agent configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="NODE_AGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    node_id: str = "node"
    host: str = "0.0.0.0"
    port: int = 9000

    # Capacity this node contributes to the pool
    total_capacity: float = 0.0
    used_capacity: float = 0.0

    is_primary: bool = False
    is_elastic: bool = False
    is_eligible: bool = False

    # Admission: when a token is configured, callers must present it
    admitted: bool = False
    admission_token: Optional[str] = None

    neighbors: List[str] = []
    payload_dir: str = "payloads"

    log_level: str = "INFO"


agent_settings = AgentSettings()
