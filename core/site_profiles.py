"""Site profile loading from the JSON sites configuration."""

from __future__ import annotations

from typing import Dict, Optional

from pydantic import ValidationError

from core.types import SiteProfile
from utils.config_loader import ConfigLoader, config_loader
from utils.error_handling import ConfigurationError
from utils.logger import get_logger

logger = get_logger(__name__)


def load_site_profiles(
    config_path: str = "config/sites.json", loader: Optional[ConfigLoader] = None
) -> Dict[str, SiteProfile]:
    """
    Validate every entry of the ``sites`` section into a ``SiteProfile``.

    Raises:
        ConfigurationError: missing/invalid file or an invalid profile
    """
    config = (loader or config_loader).load_config(config_path)
    sites = config.get("sites")
    if not isinstance(sites, dict) or not sites:
        raise ConfigurationError(f"No sites configured in {config_path}")

    profiles: Dict[str, SiteProfile] = {}
    for site_id, raw in sites.items():
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Site '{site_id}' must be an object", {"path": config_path})
        data = {"site_id": site_id, "name": site_id, **raw}
        try:
            profiles[site_id] = SiteProfile.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid profile for site '{site_id}': {exc}", {"path": config_path}
            ) from exc
    logger.debug(f"Loaded {len(profiles)} site profile(s) from {config_path}")
    return profiles


def get_site_profile(
    site_id: str, config_path: str = "config/sites.json", loader: Optional[ConfigLoader] = None
) -> SiteProfile:
    profiles = load_site_profiles(config_path, loader)
    if site_id not in profiles:
        raise ConfigurationError(
            f"Unknown site '{site_id}'", {"available": sorted(profiles)}
        )
    return profiles[site_id]
