"""
Configuration for the VM reconciler.

Reads from environment variables (prefix VM_RECONCILER_) with sensible
defaults. Dict-valued settings are given as JSON, e.g.

    VM_RECONCILER_GLOBAL_EXTRA_CONFIG='{"guestinfo.vmservice.image": "{{ image_name }}"}'
"""

import logging
from dataclasses import dataclass
from typing import Dict

from pydantic_settings import BaseSettings, SettingsConfigDict


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class BuilderOptions:
    """Feature switches handed explicitly to the config spec builder."""
    pci_devices_enabled: bool = False
    v1alpha2_enabled: bool = False


class Settings(BaseSettings):
    """Reconciler settings loaded from environment."""

    model_config = SettingsConfigDict(env_prefix="VM_RECONCILER_")

    # vCenter connection
    vcenter_host: str = "vcenter.example.com"
    vcenter_user: str = "administrator@vsphere.local"
    vcenter_password: str = ""
    verify_ssl: bool = False
    request_timeout: int = 30

    # Extra-config applied to every VM; values are templates rendered
    # against the VM spec
    global_extra_config: Dict[str, str] = {}

    # Provider tag name -> vCenter tag name, plus the category name entry
    tag_info: Dict[str, str] = {}

    # Feature switches
    pci_devices_enabled: bool = False
    v1alpha2_enabled: bool = False

    # DNS servers for guest customization
    nameserver_file: str = "/etc/resolv.conf"

    # Logging
    log_level: str = "INFO"

    def builder_options(self) -> BuilderOptions:
        return BuilderOptions(
            pci_devices_enabled=self.pci_devices_enabled,
            v1alpha2_enabled=self.v1alpha2_enabled,
        )


def configure_logging(level: str = "INFO"):
    """Configure root logging in the same format for every entry point."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
