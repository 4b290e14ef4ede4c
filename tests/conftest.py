from collections import defaultdict

import pytest
from eth_utils import to_checksum_address

from proxy_deployment.backend import (
    Backend,
    ContractCall,
    ContractCreation,
    ProxyCreation,
    Receipt,
    StorageSlot,
    ViewCall,
)
from proxy_deployment.config import DeploymentConfig
from proxy_deployment.constants import (
    EIP1967_ADMIN_SLOT,
    EIP1967_IMPLEMENTATION_SLOT,
    ZERO_ADDRESS,
)
from proxy_deployment.engine import ExecutionEngine
from proxy_deployment.errors import (
    ConfirmationTimeoutError,
    ExecutionReverted,
    SubmissionRejected,
)
from proxy_deployment.plan import plan_from_config
from proxy_deployment.registry import AddressRegistry

VAULT = "EasySwapVault"
ORDER_BOOK = "EasySwapOrderBook"
PROTOCOL_FEE = 200


def _address(n: int) -> str:
    return to_checksum_address(f"0x{n:040x}")


def _slot_value(address: str) -> bytes:
    return bytes(12) + bytes.fromhex(address[2:])


def _getter_for(method: str) -> str:
    # setOrderBook -> orderBook
    name = method[len("set") :] if method.startswith("set") else method
    return name[:1].lower() + name[1:]


class FakeBackend(Backend):
    """
    In-memory chain. Transactions take effect when their confirmation is awaited;
    faults are injected per (payload type, contract type).
    """

    def __init__(self):
        self._deployer = _address(0xDE9107E5)
        self._nonce = 0
        self._next_address = 0x1000
        self.submitted = list()
        self.pending = dict()
        self.receipts = dict()
        self.storage = defaultdict(dict)
        self.state = defaultdict(dict)
        self.code = dict()

        self.stalled = set()
        self.rejected = set()
        self.reverts = dict()
        self.corrupted = set()
        self.ignore_calls = False

    @property
    def deployer_address(self):
        return self._deployer

    #
    # Fault injection
    #

    def stall(self, payload_type, contract_type):
        self.stalled.add((payload_type.__name__, contract_type))

    def reject(self, payload_type, contract_type):
        self.rejected.add((payload_type.__name__, contract_type))

    def revert(self, payload_type, contract_type, reason):
        self.reverts[(payload_type.__name__, contract_type)] = reason

    def corrupt(self, contract_type):
        """Proxies of this contract type point at an unexpected implementation."""
        self.corrupted.add(contract_type)

    def heal(self):
        self.stalled.clear()
        self.rejected.clear()
        self.reverts.clear()
        self.corrupted.clear()
        self.ignore_calls = False

    def count(self, payload_type, contract_type=None):
        return sum(
            1
            for payload in self.submitted
            if isinstance(payload, payload_type)
            and (contract_type is None or payload.contract_type == contract_type)
        )

    #
    # Backend
    #

    def _new_address(self):
        self._next_address += 1
        return _address(self._next_address)

    def submit(self, payload):
        key = (type(payload).__name__, payload.contract_type)
        if key in self.rejected:
            raise SubmissionRejected(f"nonce too low for {payload.contract_type}")
        self._nonce += 1
        reference = f"0x{self._nonce:064x}"
        self.submitted.append(payload)
        self.pending[reference] = payload
        return reference

    def _apply(self, payload):
        if isinstance(payload, ContractCreation):
            address = self._new_address()
            self.code[address] = payload.contract_type
            return address

        if isinstance(payload, ProxyCreation):
            proxy, proxy_admin = self._new_address(), self._new_address()
            implementation = payload.implementation
            if payload.contract_type in self.corrupted:
                implementation = self._new_address()
            self.storage[proxy][EIP1967_IMPLEMENTATION_SLOT] = _slot_value(implementation)
            self.storage[proxy][EIP1967_ADMIN_SLOT] = _slot_value(proxy_admin)
            self.state[proxy][payload.initializer] = tuple(payload.args)
            self.code[proxy] = payload.contract_type
            return proxy

        if isinstance(payload, ContractCall):
            if not self.ignore_calls:
                value = payload.args[0] if len(payload.args) == 1 else tuple(payload.args)
                self.state[payload.address][_getter_for(payload.method)] = value
            return None

        raise TypeError(f"Unsupported payload {payload!r}")

    def wait_for_confirmation(self, reference, timeout):
        if reference in self.receipts:
            return self.receipts[reference]

        payload = self.pending[reference]
        key = (type(payload).__name__, payload.contract_type)
        if key in self.stalled:
            raise ConfirmationTimeoutError(reference=reference, timeout=timeout)
        if key in self.reverts:
            del self.pending[reference]
            raise ExecutionReverted(reason=self.reverts[key], reference=reference)

        contract_address = self._apply(payload)
        receipt = Receipt(
            tx_hash=reference,
            block_number=len(self.receipts) + 1,
            contract_address=contract_address,
        )
        self.receipts[reference] = receipt
        del self.pending[reference]
        return receipt

    def read_state(self, address, query):
        if isinstance(query, StorageSlot):
            return self.storage[address].get(query.slot, bytes(32))
        if isinstance(query, ViewCall):
            return self.state[address].get(query.method, ZERO_ADDRESS)
        raise TypeError(f"Unsupported query {query!r}")


@pytest.fixture
def params():
    return {
        "deployment": {"name": "easyswap-test"},
        "settings": {
            "protocol_fee": PROTOCOL_FEE,
            "eip712": {"name": "EasySwapOrderBook", "version": "1"},
        },
        "contracts": [
            {
                VAULT: {
                    "links": [
                        {
                            "method": "setOrderBook",
                            "getter": "orderBook",
                            "args": [f"${ORDER_BOOK}"],
                        }
                    ]
                }
            },
            {
                ORDER_BOOK: {
                    "initializer_args": {
                        "newProtocolShare": "$PROTOCOL_FEE",
                        "newVault": f"${VAULT}",
                        "EIP712Name": "$EIP712_NAME",
                        "EIP712Version": "$EIP712_VERSION",
                    }
                }
            },
        ],
    }


@pytest.fixture
def config(params):
    return DeploymentConfig(params)


@pytest.fixture
def plan(config):
    return plan_from_config(config)


@pytest.fixture
def registry(tmp_path):
    return AddressRegistry(tmp_path / "artifacts")


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def engine(registry, backend):
    return ExecutionEngine(registry, backend, timeout=1, autosign=True)
