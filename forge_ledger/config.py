from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    app_name: str = "Forge Ledger"
    # Default to a local postgres database if not set in env
    database_url: str = "postgresql+asyncpg://localhost/forge"

    # Economy
    points_per_turn: int = 10
    threshold_points: int = 100  # one "resonance" per multiple of this

    # Checkpoints kept per thread (oldest evicted first)
    checkpoint_capacity: int = 10

    # Scaling perks: xp_needed(level) = level * xp_per_level
    xp_per_level: int = 10
    default_max_level: int = 10

    # Plausibility bounds for scraped narrative candidates
    perk_name_min_length: int = 3
    perk_name_max_length: int = 99
    max_perk_cost: int = 2000
    max_points_award: int = 500

    # Fenced block keyword the narrator uses for structured snapshots: ```forge
    block_tag: str = "forge"

    # Detection toggles
    tracking_enabled: bool = True
    auto_detect_perks: bool = True
    auto_detect_points: bool = True

    # Create a checkpoint automatically whenever a threshold is crossed
    auto_checkpoint_on_threshold: bool = True

    # Logging
    log_file: Optional[str] = None
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

@lru_cache
def get_settings():
    return Settings()
