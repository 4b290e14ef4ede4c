import typing
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional

import yaml

from proxy_deployment.constants import (
    EIP712_NAME_CONSTANT,
    EIP712_VERSION_CONSTANT,
    MAX_BASIS_POINTS,
    PROTOCOL_FEE_CONSTANT,
)
from proxy_deployment.errors import ConfigurationError
from proxy_deployment.utils import _load_yaml


class DeploymentSettings(NamedTuple):
    """Deployment-wide values consumed by initializers (protocol fee, EIP-712 domain)."""

    protocol_fee: Optional[int] = None
    eip712_name: Optional[str] = None
    eip712_version: Optional[str] = None

    @classmethod
    def from_config(cls, settings: Optional[Dict]) -> "DeploymentSettings":
        settings = settings or dict()
        if not isinstance(settings, dict):
            raise ConfigurationError("Malformed 'settings' section in params file.")
        eip712 = settings.get("eip712") or dict()
        if not isinstance(eip712, dict):
            raise ConfigurationError("Malformed 'settings.eip712' section in params file.")
        return cls(
            protocol_fee=settings.get("protocol_fee"),
            eip712_name=eip712.get("name"),
            eip712_version=eip712.get("version"),
        )

    def override(self, **overrides) -> "DeploymentSettings":
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return self._replace(**overrides)

    def constants(self) -> Dict[str, Any]:
        """Settings exposed to initializer templates as $CONSTANTS."""
        values = {
            PROTOCOL_FEE_CONSTANT: self.protocol_fee,
            EIP712_NAME_CONSTANT: self.eip712_name,
            EIP712_VERSION_CONSTANT: self.eip712_version,
        }
        return {name: value for name, value in values.items() if value is not None}


def validate_settings(settings: DeploymentSettings) -> None:
    fee = settings.protocol_fee
    if fee is not None:
        if isinstance(fee, bool) or not isinstance(fee, int):
            raise ConfigurationError(f"Protocol fee must be an integer, got {fee!r}")
        if not 0 <= fee < MAX_BASIS_POINTS:
            raise ConfigurationError(
                f"Protocol fee must be within [0, {MAX_BASIS_POINTS}) basis points, got {fee}"
            )

    domain = (settings.eip712_name, settings.eip712_version)
    if any(value is not None for value in domain):
        for label, value in zip(("name", "version"), domain):
            if value is not None and not isinstance(value, str):
                raise ConfigurationError(
                    f"EIP-712 domain {label} must be a string, got {value!r}; quote it in YAML"
                )
            if value is None or not value.strip():
                raise ConfigurationError(f"EIP-712 domain {label} must not be empty")


class DeploymentConfig:
    """A validated deployment params file."""

    def __init__(self, config: typing.Dict, path: Optional[Path] = None, **overrides):
        if not isinstance(config, dict):
            raise ConfigurationError("Params file must be a mapping.")
        self.path = path

        deployment = config.get("deployment") or dict()
        if not isinstance(deployment, dict):
            raise ConfigurationError("Malformed 'deployment' section in params file.")
        self.name = deployment.get("name", path.stem if path else "deployment")
        self.chain_id = deployment.get("chain_id")

        contracts = config.get("contracts")
        if not contracts or not isinstance(contracts, list):
            raise ConfigurationError("Params file missing 'contracts' list.")
        self.contracts: List[Any] = contracts

        self.settings = DeploymentSettings.from_config(config.get("settings")).override(**overrides)
        validate_settings(self.settings)

        constants = config.get("constants") or dict()
        if not isinstance(constants, dict):
            raise ConfigurationError("Malformed 'constants' section in params file.")
        settings_constants = self.settings.constants()
        clashes = set(constants) & set(settings_constants)
        if clashes:
            raise ConfigurationError(
                f"Constants {', '.join(sorted(clashes))} are reserved for deployment settings."
            )
        self.constants = {**constants, **settings_constants}

    @classmethod
    def from_yaml(cls, filepath: Path, **overrides) -> "DeploymentConfig":
        try:
            config = _load_yaml(filepath)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read params file {filepath}: {e}") from e
        return cls(config=config, path=Path(filepath), **overrides)
