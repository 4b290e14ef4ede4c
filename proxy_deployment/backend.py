from abc import ABC, abstractmethod
from typing import Any, NamedTuple, Optional, Tuple, Union

from eth_typing import ChecksumAddress

TxReference = str


#
# Payloads
#


class ContractCreation(NamedTuple):
    """Creates a contract (e.g. a proxy's implementation) from a compiled artifact."""

    contract_type: str
    args: Tuple[Any, ...] = ()


class ProxyCreation(NamedTuple):
    """Creates an EIP-1967 transparent proxy whose constructor calls the initializer."""

    contract_type: str
    implementation: ChecksumAddress
    owner: ChecksumAddress
    initializer: str
    args: Tuple[Any, ...] = ()


class ContractCall(NamedTuple):
    """A state-changing call on an already deployed contract."""

    contract_type: str
    address: ChecksumAddress
    method: str
    args: Tuple[Any, ...] = ()


Payload = Union[ContractCreation, ProxyCreation, ContractCall]


#
# Queries
#


class StorageSlot(NamedTuple):
    slot: int


class ViewCall(NamedTuple):
    contract_type: str
    method: str
    args: Tuple[Any, ...] = ()


Query = Union[StorageSlot, ViewCall]


class Receipt(NamedTuple):
    tx_hash: TxReference
    block_number: int
    contract_address: Optional[ChecksumAddress] = None


class Backend(ABC):
    """
    The remote execution environment: accepts transactions and exposes readable state.

    Implementations raise ``SubmissionRejected`` from ``submit``, and
    ``ConfirmationTimeoutError`` or ``ExecutionReverted`` from ``wait_for_confirmation``.
    """

    @property
    @abstractmethod
    def deployer_address(self) -> ChecksumAddress:
        """The primary transaction signer."""
        raise NotImplementedError

    @abstractmethod
    def submit(self, payload: Payload) -> TxReference:
        raise NotImplementedError

    @abstractmethod
    def wait_for_confirmation(self, reference: TxReference, timeout: float) -> Receipt:
        raise NotImplementedError

    @abstractmethod
    def read_state(self, address: ChecksumAddress, query: Query) -> Any:
        raise NotImplementedError
