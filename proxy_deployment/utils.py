import json
import re
from pathlib import Path
from typing import Any

import yaml
from eth_typing import ChecksumAddress
from eth_utils import is_address, to_checksum_address

STANDARD_REGISTRY_JSON_FORMAT = {"indent": 4, "separators": (",", ": ")}


def _load_yaml(filepath: Path) -> dict:
    """Loads a YAML file."""
    with open(filepath, "r") as file:
        return yaml.safe_load(file)


def _load_json(filepath: Path) -> dict:
    """Loads a JSON file."""
    with open(filepath, "r") as file:
        return json.load(file)


def _write_json(data: Any, filepath: Path) -> Path:
    """Writes JSON atomically: a temp file is written first and then moved into place."""
    filepath.parent.mkdir(parents=True, exist_ok=True)
    temp_filepath = filepath.with_suffix(".temp.json")
    with open(temp_filepath, "w") as file:
        json.dump(data, file, **STANDARD_REGISTRY_JSON_FORMAT)
    temp_filepath.replace(filepath)
    return filepath


def network_slug(network: str) -> str:
    """Filesystem-safe name for a network choice, e.g. 'ethereum:sepolia' -> 'ethereum-sepolia'."""
    slug = re.sub(r"[^A-Za-z0-9_-]+", "-", network).strip("-")
    if not slug:
        raise ValueError(f"Invalid network identifier '{network}'")
    return slug


def network_key(network: str) -> str:
    """
    Registry key for a network choice: the ecosystem and network, without the provider.
    e.g. 'ethereum:sepolia:alchemy' -> 'ethereum:sepolia'
    """
    parts = [part for part in network.split(":") if part][:2]
    if not parts:
        raise ValueError(f"Invalid network identifier '{network}'")
    return ":".join(parts)


def address_from_slot(value: bytes) -> ChecksumAddress:
    """Extracts the address stored in the low 20 bytes of a storage slot."""
    return to_checksum_address(bytes(value)[-20:])


def same_value(a: Any, b: Any) -> bool:
    """Compares two on-chain values; addresses compare regardless of checksum casing."""
    if isinstance(a, str) and isinstance(b, str) and is_address(a) and is_address(b):
        return to_checksum_address(a) == to_checksum_address(b)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(same_value(x, y) for x, y in zip(a, b))
    return a == b


def to_json_value(value: Any) -> Any:
    """Converts a resolved argument into something the registry can persist."""
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return value
