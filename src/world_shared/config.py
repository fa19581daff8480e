"""Environment configuration using pydantic-settings."""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings

from src.world_shared.constants import STATE_DIR


class WorldSettings(BaseSettings):
    """Process-wide settings read from the environment."""
    log_level: str = Field(default="info", validation_alias="WORLD_LOG_LEVEL")
    state_dir: str = Field(default=STATE_DIR, validation_alias="WORLD_STATE_DIR")
    local_feed_dir: str = Field(
        default="./local-feeds", validation_alias="WORLD_LOCAL_FEED_DIR"
    )
    allow_downgrade: bool = Field(
        default=False, validation_alias="WORLD_ALLOW_DOWNGRADE"
    )

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }
