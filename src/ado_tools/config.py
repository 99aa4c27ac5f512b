"""
Runtime configuration.

Values are resolved in this order (later wins):
1. Built-in defaults
2. Persisted settings ({home_dir}/settings.json), written by the CLI
3. Environment variables (a .env file in the working directory is loaded first)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv

from .credentials.device_code import VISUAL_STUDIO_CLIENT_ID
from .credentials.models import AuthMethod
from .errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".ado-tools"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


class SettingsFile:
    """
    Persisted user settings (organization URL, readonly flag).

    Stored as plain JSON; it never contains secrets.
    """

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable settings file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def update(self, **values: Any) -> dict[str, Any]:
        data = self.load()
        data.update(values)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)
        return data


@dataclass
class AdoToolsConfig:
    """
    Configuration for the Azure DevOps tools.

    Attributes:
        organization_url: Organization base URL (ADO_ORGANIZATION_URL)
        readonly: Block every mutating operation (ADO_READONLY)
        home_dir: Directory for settings and encrypted secrets (ADO_TOOLS_HOME)
        auth_method: Sign-in method used when nobody can be asked (ADO_AUTH_METHOD)
        tenant: Directory tenant for sign-in (ADO_TENANT)
        client_id: Public client id for the device-code flow (ADO_CLIENT_ID)
        log_level: Logging level name (ADO_LOG_LEVEL)
    """

    organization_url: str | None = None
    readonly: bool = False
    home_dir: Path = field(default_factory=lambda: DEFAULT_HOME)
    auth_method: AuthMethod = AuthMethod.DEVICE_CODE
    tenant: str = "organizations"
    client_id: str = VISUAL_STUDIO_CLIENT_ID
    log_level: str = "WARNING"

    @property
    def settings_file(self) -> SettingsFile:
        return SettingsFile(self.home_dir / "settings.json")

    @classmethod
    def load(cls, env_file: Path | None = None) -> AdoToolsConfig:
        """
        Build the configuration from persisted settings and the environment.

        Raises:
            ValidationError: If ADO_AUTH_METHOD names an unknown method
        """
        load_dotenv(env_file or find_dotenv(usecwd=True))

        home_dir = Path(os.environ.get("ADO_TOOLS_HOME") or DEFAULT_HOME).expanduser()
        config = cls(home_dir=home_dir)

        config.refresh()

        if os.environ.get("ADO_AUTH_METHOD"):
            try:
                config.auth_method = AuthMethod(os.environ["ADO_AUTH_METHOD"].strip().lower())
            except ValueError as e:
                choices = ", ".join(m.value for m in AuthMethod)
                raise ValidationError(f"ADO_AUTH_METHOD must be one of: {choices}") from e
        config.tenant = os.environ.get("ADO_TENANT", config.tenant)
        config.client_id = os.environ.get("ADO_CLIENT_ID", config.client_id)
        config.log_level = os.environ.get("ADO_LOG_LEVEL", config.log_level).upper()

        return config

    def refresh(self) -> None:
        """
        Re-read the persisted organization and readonly settings.

        A long-running server calls this before every operation so that
        'ado-tools readonly' and 'ado-tools set-organization' run from
        another process take effect. Keys missing from the file keep their
        current value, and the environment still wins.
        """
        persisted = self.settings_file.load()
        if "organization_url" in persisted:
            self.organization_url = persisted["organization_url"] or None
        if "readonly" in persisted:
            self.readonly = bool(persisted["readonly"])

        if os.environ.get("ADO_ORGANIZATION_URL"):
            self.organization_url = os.environ["ADO_ORGANIZATION_URL"]
        if os.environ.get("ADO_READONLY"):
            self.readonly = _parse_bool(os.environ["ADO_READONLY"])

    def save_organization(self, url: str) -> None:
        self.organization_url = url
        self.settings_file.update(organization_url=url)

    def save_readonly(self, readonly: bool) -> None:
        self.readonly = readonly
        self.settings_file.update(readonly=readonly)
