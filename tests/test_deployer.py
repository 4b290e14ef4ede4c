from collections import OrderedDict

import pytest

from proxy_deployment.backend import ContractCreation, ProxyCreation
from proxy_deployment.constants import EIP1967_ADMIN_SLOT, IMPLEMENTATION_STAGE, PROXY_STAGE
from proxy_deployment.deployer import ProxyDeployer
from proxy_deployment.errors import (
    ConfirmationTimeoutError,
    ExecutionReverted,
    SubmissionRejected,
    UnresolvedArgument,
)
from proxy_deployment.params import ComponentAddress, VariableContext
from proxy_deployment.plan import ComponentSpec
from proxy_deployment.registry import DeploymentStatus
from proxy_deployment.utils import address_from_slot

NETWORK = "ethereum:local:test"
ORDER_BOOK = "EasySwapOrderBook"
VAULT_PROXY = "0x00000000000000000000000000000000000000Aa"

ORDER_BOOK_SPEC = ComponentSpec(
    id=ORDER_BOOK,
    name=ORDER_BOOK,
    contract_type=ORDER_BOOK,
    dependencies=("EasySwapVault",),
)


def resolved_args(vault=VAULT_PROXY):
    return OrderedDict(
        [
            ("newProtocolShare", 200),
            ("newVault", vault),
            ("EIP712Name", "EasySwapOrderBook"),
            ("EIP712Version", "1"),
        ]
    )


@pytest.fixture
def deployer(backend):
    return ProxyDeployer(backend, timeout=1, autosign=True)


def test_deploy(backend, deployer):
    checkpoints = list()
    record = deployer.deploy(
        ORDER_BOOK_SPEC, resolved_args(), NETWORK, checkpoint=checkpoints.append
    )

    assert DeploymentStatus.DEPLOYED == record.status
    assert ORDER_BOOK == record.component
    assert backend.code[record.implementation] == ORDER_BOOK
    assert backend.code[record.proxy] == ORDER_BOOK
    assert record.proxy != record.implementation
    assert record.admin is not None
    assert backend.deployer_address == record.deployer
    assert {IMPLEMENTATION_STAGE, PROXY_STAGE} == set(record.tx_hashes)
    assert dict(resolved_args()) == record.init_args

    # initializer ran through the proxy constructor with the resolved arguments
    (proxy_creation,) = [p for p in backend.submitted if isinstance(p, ProxyCreation)]
    assert "initialize" == proxy_creation.initializer
    assert tuple(resolved_args().values()) == proxy_creation.args
    assert backend.deployer_address == proxy_creation.owner
    assert tuple(resolved_args().values()) == backend.state[record.proxy]["initialize"]

    # each stage is persisted as pending at submission
    assert [DeploymentStatus.PENDING, DeploymentStatus.PENDING] == [c.status for c in checkpoints]
    assert PROXY_STAGE not in checkpoints[0].tx_hashes
    assert PROXY_STAGE in checkpoints[1].tx_hashes


def test_unresolved_argument_fails_before_submission(backend, deployer):
    context = VariableContext(component_ids=["EasySwapVault"], component_id=ORDER_BOOK)
    placeholder = ComponentAddress("EasySwapVault", context)

    for value in ("$EasySwapVault", placeholder, ["$EasySwapVault"]):
        with pytest.raises(UnresolvedArgument) as exc_info:
            deployer.deploy(ORDER_BOOK_SPEC, resolved_args(vault=value), NETWORK)
        assert "newVault" == exc_info.value.name
    assert [] == backend.submitted


def test_rejected_submission(backend, deployer):
    backend.reject(ContractCreation, ORDER_BOOK)
    checkpoints = list()
    with pytest.raises(SubmissionRejected):
        deployer.deploy(ORDER_BOOK_SPEC, resolved_args(), NETWORK, checkpoint=checkpoints.append)
    assert [] == checkpoints


def test_timeout_then_resume_polls(backend, deployer):
    backend.stall(ProxyCreation, ORDER_BOOK)
    with pytest.raises(ConfirmationTimeoutError) as exc_info:
        deployer.deploy(ORDER_BOOK_SPEC, resolved_args(), NETWORK)

    pending = exc_info.value.record
    assert DeploymentStatus.PENDING == pending.status
    assert pending.implementation is not None
    assert pending.reference(PROXY_STAGE) == exc_info.value.reference
    assert 2 == len(backend.submitted)

    backend.heal()
    record = deployer.deploy(ORDER_BOOK_SPEC, resolved_args(), NETWORK, previous=pending)
    assert DeploymentStatus.DEPLOYED == record.status
    assert 2 == len(backend.submitted)
    assert pending.implementation == record.implementation
    assert pending.reference(PROXY_STAGE) == record.reference(PROXY_STAGE)


def test_dropped_transaction_is_resubmitted_after_failed_entry(backend, deployer):
    backend.stall(ProxyCreation, ORDER_BOOK)
    with pytest.raises(ConfirmationTimeoutError) as exc_info:
        deployer.deploy(ORDER_BOOK_SPEC, resolved_args(), NETWORK)
    error = exc_info.value
    assert error.reference in str(error)
    assert "'failed' entry" in str(error)

    # the proxy transaction never made it into a block
    backend.heal()
    del backend.pending[error.reference]
    failed = error.record._replace(status=DeploymentStatus.FAILED)

    record = deployer.deploy(ORDER_BOOK_SPEC, resolved_args(), NETWORK, previous=failed)
    assert DeploymentStatus.DEPLOYED == record.status
    assert failed.implementation == record.implementation
    assert error.reference != record.reference(PROXY_STAGE)
    assert 1 == backend.count(ContractCreation)
    assert 2 == backend.count(ProxyCreation)


def test_changed_arguments_are_not_resumed(backend, deployer):
    backend.stall(ProxyCreation, ORDER_BOOK)
    with pytest.raises(ConfirmationTimeoutError) as exc_info:
        deployer.deploy(ORDER_BOOK_SPEC, resolved_args(), NETWORK)
    pending = exc_info.value.record

    backend.heal()
    args = resolved_args()
    args["newProtocolShare"] = 300
    record = deployer.deploy(ORDER_BOOK_SPEC, args, NETWORK, previous=pending)
    assert DeploymentStatus.DEPLOYED == record.status
    assert 300 == record.init_args["newProtocolShare"]
    # the confirmed implementation is reused, the proxy is submitted again
    assert 1 == backend.count(ContractCreation)
    assert 2 == backend.count(ProxyCreation)


def test_revert_produces_failed_record(backend, deployer):
    reason = "InvalidInitialization()"
    backend.revert(ProxyCreation, ORDER_BOOK, reason)
    with pytest.raises(ExecutionReverted) as exc_info:
        deployer.deploy(ORDER_BOOK_SPEC, resolved_args(), NETWORK)

    assert reason == exc_info.value.reason
    failed = exc_info.value.record
    assert DeploymentStatus.FAILED == failed.status
    assert reason == failed.error
    assert failed.implementation is not None
    assert failed.reference(PROXY_STAGE) is None

    # the retry reuses the confirmed implementation
    backend.heal()
    record = deployer.deploy(ORDER_BOOK_SPEC, resolved_args(), NETWORK, previous=failed)
    assert DeploymentStatus.DEPLOYED == record.status
    assert failed.implementation == record.implementation
    assert record.error is None
    assert 1 == backend.count(ContractCreation)


def test_admin_is_read_from_proxy(backend, deployer):
    record = deployer.deploy(ORDER_BOOK_SPEC, resolved_args(), NETWORK)
    assert address_from_slot(backend.storage[record.proxy][EIP1967_ADMIN_SLOT]) == record.admin
