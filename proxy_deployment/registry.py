import os
import time
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, NamedTuple, Optional

from eth_typing import ChecksumAddress

from proxy_deployment.constants import LOCK_FILE_SUFFIX, REGISTRY_FILE_SUFFIX
from proxy_deployment.errors import ConfigurationError, RegistryLocked
from proxy_deployment.utils import _load_json, _write_json, network_slug

ComponentId = str
LinkId = str


class DeploymentStatus(Enum):
    PENDING = "pending"
    DEPLOYED = "deployed"
    LINKED = "linked"
    VERIFIED = "verified"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        """Position in the progress order; failed is below every other status."""
        try:
            return _STATUS_ORDER.index(self)
        except ValueError:
            return -1

    def satisfies(self, desired: "DeploymentStatus") -> bool:
        if self is DeploymentStatus.FAILED:
            return False
        return self.rank >= desired.rank


_STATUS_ORDER = (
    DeploymentStatus.PENDING,
    DeploymentStatus.DEPLOYED,
    DeploymentStatus.LINKED,
    DeploymentStatus.VERIFIED,
)


class DeploymentRecord(NamedTuple):
    """The outcome of one deployment attempt of a single component on a single network."""

    network: str
    component: ComponentId
    contract_type: str
    status: DeploymentStatus
    proxy: Optional[ChecksumAddress] = None
    implementation: Optional[ChecksumAddress] = None
    admin: Optional[ChecksumAddress] = None
    init_args: Optional[Dict[str, Any]] = None
    tx_hashes: Optional[Dict[str, str]] = None
    deployer: Optional[ChecksumAddress] = None
    error: Optional[str] = None
    timestamp: int = 0

    def reference(self, stage: str) -> Optional[str]:
        """Returns the transaction reference submitted for a deployment stage, if any."""
        return (self.tx_hashes or dict()).get(stage)

    def with_reference(self, stage: str, reference: str) -> "DeploymentRecord":
        tx_hashes = dict(self.tx_hashes or dict())
        tx_hashes[stage] = reference
        return self._replace(tx_hashes=tx_hashes, timestamp=int(time.time()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contract_type": self.contract_type,
            "status": self.status.value,
            "proxy": self.proxy,
            "implementation": self.implementation,
            "admin": self.admin,
            "init_args": dict(self.init_args or dict()),
            "tx_hashes": dict(self.tx_hashes or dict()),
            "deployer": self.deployer,
            "error": self.error,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, network: str, component: ComponentId, data: Dict) -> "DeploymentRecord":
        return cls(
            network=network,
            component=component,
            contract_type=data["contract_type"],
            status=DeploymentStatus(data["status"]),
            proxy=data.get("proxy"),
            implementation=data.get("implementation"),
            admin=data.get("admin"),
            init_args=data.get("init_args") or dict(),
            tx_hashes=data.get("tx_hashes") or dict(),
            deployer=data.get("deployer"),
            error=data.get("error"),
            timestamp=int(data.get("timestamp", 0)),
        )


class LinkRecord(NamedTuple):
    """The outcome of one cross-wiring call between two deployed components."""

    network: str
    link: LinkId
    source: ComponentId
    target: ComponentId
    method: str
    status: DeploymentStatus
    args: Optional[List[Any]] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    timestamp: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "method": self.method,
            "status": self.status.value,
            "args": list(self.args or list()),
            "tx_hash": self.tx_hash,
            "error": self.error,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, network: str, link: LinkId, data: Dict) -> "LinkRecord":
        return cls(
            network=network,
            link=link,
            source=data["source"],
            target=data["target"],
            method=data["method"],
            status=DeploymentStatus(data["status"]),
            args=data.get("args") or list(),
            tx_hash=data.get("tx_hash"),
            error=data.get("error"),
            timestamp=int(data.get("timestamp", 0)),
        )


class AddressRegistry:
    """
    Durable, append-only record of deployments and links, one JSON file per network.

    Each file has the layout
    ``{network: {"components": {id: [records]}, "links": {id: [records]}}}``
    where the last record of each list is the current one.
    """

    COMPONENTS = "components"
    LINKS = "links"

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def filepath(self, network: str) -> Path:
        return self.directory / f"{network_slug(network)}{REGISTRY_FILE_SUFFIX}"

    def _load(self, network: str) -> Dict[str, Dict]:
        """Reads the whole registry file, which must not hold any other network."""
        filepath = self.filepath(network)
        contents = _load_json(filepath) if filepath.exists() else dict()
        others = sorted(key for key in contents if key != network)
        if others:
            raise ConfigurationError(
                f"Registry file {filepath} holds records for {others[0]}, "
                f"which shares its file name with {network}"
            )
        return contents

    def _read(self, network: str) -> Dict[str, Dict[str, List[Dict]]]:
        data = self._load(network).get(network, dict())
        data.setdefault(self.COMPONENTS, dict())
        data.setdefault(self.LINKS, dict())
        return data

    def _append(self, network: str, section: str, key: str, entry: Dict) -> None:
        contents = self._load(network)
        data = contents.setdefault(network, dict())
        data.setdefault(section, dict()).setdefault(key, list()).append(entry)
        _write_json(contents, self.filepath(network))

    #
    # Components
    #

    def history(self, network: str, component: ComponentId) -> List[DeploymentRecord]:
        entries = self._read(network)[self.COMPONENTS].get(component, list())
        return [DeploymentRecord.from_dict(network, component, entry) for entry in entries]

    def lookup(self, network: str, component: ComponentId) -> Optional[DeploymentRecord]:
        history = self.history(network, component)
        return history[-1] if history else None

    def record(self, network: str, component: ComponentId, record: DeploymentRecord) -> None:
        if record.network != network or record.component != component:
            raise ValueError(
                f"Record for {record.component} on {record.network} "
                f"cannot be stored as {component} on {network}"
            )
        self._append(network, self.COMPONENTS, component, record.to_dict())

    def is_satisfied(
        self, network: str, component: ComponentId, desired: DeploymentStatus
    ) -> bool:
        record = self.lookup(network, component)
        if record is None:
            return False
        return record.status.satisfies(desired)

    def components(self, network: str) -> List[ComponentId]:
        return list(self._read(network)[self.COMPONENTS])

    #
    # Links
    #

    def link_history(self, network: str, link: LinkId) -> List[LinkRecord]:
        entries = self._read(network)[self.LINKS].get(link, list())
        return [LinkRecord.from_dict(network, link, entry) for entry in entries]

    def lookup_link(self, network: str, link: LinkId) -> Optional[LinkRecord]:
        history = self.link_history(network, link)
        return history[-1] if history else None

    def record_link(self, network: str, link: LinkId, record: LinkRecord) -> None:
        if record.network != network or record.link != link:
            raise ValueError(f"Record for {record.link} cannot be stored as {link} on {network}")
        self._append(network, self.LINKS, link, record.to_dict())

    def is_linked(self, network: str, link: LinkId) -> bool:
        record = self.lookup_link(network, link)
        return record is not None and record.status is DeploymentStatus.LINKED

    def links(self, network: str) -> List[LinkId]:
        return list(self._read(network)[self.LINKS])

    #
    # Run-level mutual exclusion
    #

    @contextmanager
    def lock(self, network: str) -> Iterator[Path]:
        """Holds an exclusive lock on the network's registry for the duration of a run."""
        lock_filepath = self.filepath(network).with_suffix(LOCK_FILE_SUFFIX)
        lock_filepath.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(lock_filepath, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            holder = lock_filepath.read_text().strip() or "unknown"
            raise RegistryLocked(
                f"Registry for {network} is locked by process {holder}; "
                f"remove {lock_filepath} if that process is gone."
            )
        with os.fdopen(fd, "w") as file:
            file.write(str(os.getpid()))
        try:
            yield lock_filepath
        finally:
            lock_filepath.unlink()
