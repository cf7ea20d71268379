"""Central configuration loaded from environment variables and YAML lab profiles."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict

from lablaunch.models import ProvisionRequest

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
LABS_DIR = CONFIG_DIR / "labs"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Lab provisioning service
    launch_url: str = "https://simpleltest4framerbutton.azurewebsites.net/api/HttpTrigger1"
    otp_refresh_url: str = "https://simpleltest4framerbutton.azurewebsites.net/api/totptriggertest"
    request_timeout: float = 30.0

    # OTP display
    otp_cycle_seconds: int = 30
    otp_warning_seconds: int = 10
    tick_interval: float = 1.0

    # Lab profiles
    default_profile: str = "default"

    # Supabase
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # Logging
    log_level: str = "INFO"


class LabProfile(BaseModel):
    """One deployment target read from ``config/labs/<slug>.yaml``."""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    description: str = ""
    subscription_id: str
    resource_group: str
    template_url: str

    def to_request(self) -> ProvisionRequest:
        return ProvisionRequest(
            subscription_id=self.subscription_id,
            resource_group=self.resource_group,
            template_url=self.template_url,
        )


def load_lab_profile(slug: str) -> LabProfile:
    """Load and validate a lab profile YAML by slug name."""
    path = LABS_DIR / f"{slug}.yaml"
    if not path.exists():
        raise FileNotFoundError(f"Lab profile not found: {path}")
    with open(path) as f:
        return LabProfile.model_validate(yaml.safe_load(f) or {})


def load_all_lab_profiles() -> dict[str, LabProfile]:
    """Load all lab profiles from the labs directory, sorted by slug."""
    if not LABS_DIR.exists():
        return {}
    return {path.stem: load_lab_profile(path.stem) for path in sorted(LABS_DIR.glob("*.yaml"))}


def profile_request(slug: str) -> ProvisionRequest:
    """Build the launch request described by a lab profile."""
    return load_lab_profile(slug).to_request()


settings = Settings()
