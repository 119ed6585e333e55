"""Configuration for the offline client."""

from pathlib import Path

from pydantic import BaseModel, Field

from .tiles import OSM_TILE_TEMPLATE


class Config(BaseModel):
    """Local configuration for this device."""

    api_base_url: str
    user_id: str | None = None
    cache_dir: Path = Field(default_factory=lambda: Path.home() / ".bperks" / "cache")
    poll_interval_seconds: int = Field(default=10, gt=0)
    health_path: str = "/api/health"
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    tile_ttl_days: int = Field(default=7, gt=0)
    tile_url_template: str = OSM_TILE_TEMPLATE
    # Queue every mutation, even while online
    always_queue: bool = False


def load_config(path: Path) -> Config:
    """Load configuration from a JSON file."""
    return Config.model_validate_json(path.read_text())
