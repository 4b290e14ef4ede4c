import pytest

from proxy_deployment.backend import ContractCall
from proxy_deployment.errors import (
    DependencyNotReady,
    LinkVerificationFailed,
    UnresolvedArgument,
)
from proxy_deployment.linker import LinkAction, Linker, LinkOutcome, resolve_link_action
from proxy_deployment.params import ResolutionContext
from proxy_deployment.registry import DeploymentRecord, DeploymentStatus, LinkRecord

NETWORK = "ethereum:local:test"
VAULT = "EasySwapVault"
ORDER_BOOK = "EasySwapOrderBook"
VAULT_PROXY = "0x000000000000000000000000000000000000000A"
ORDER_BOOK_PROXY = "0x000000000000000000000000000000000000000b"


def link_action(**overrides):
    fields = dict(
        id=f"{VAULT}.setOrderBook",
        source=VAULT,
        target=ORDER_BOOK,
        contract_type=VAULT,
        address=VAULT_PROXY,
        method="setOrderBook",
        getter="orderBook",
        args=(ORDER_BOOK_PROXY,),
        expected=ORDER_BOOK_PROXY,
    )
    fields.update(overrides)
    return LinkAction(**fields)


@pytest.fixture
def linker(backend):
    return Linker(backend, timeout=1, autosign=True)


def test_link(backend, linker):
    references = list()
    result = linker.link(link_action(), checkpoint=references.append)

    assert LinkOutcome.LINKED == result.outcome
    assert [result.tx_hash] == references
    (call,) = backend.submitted
    assert ContractCall(VAULT, VAULT_PROXY, "setOrderBook", (ORDER_BOOK_PROXY,)) == call
    assert ORDER_BOOK_PROXY == backend.state[VAULT_PROXY]["orderBook"]


def test_already_linked_sends_nothing(backend, linker):
    # checksum casing differs from the desired value
    backend.state[VAULT_PROXY]["orderBook"] = ORDER_BOOK_PROXY.upper().replace("0X", "0x")
    references = list()
    result = linker.link(link_action(), checkpoint=references.append)

    assert LinkOutcome.ALREADY_LINKED == result.outcome
    assert result.tx_hash is None
    assert [] == backend.submitted
    assert [] == references


def test_read_back_mismatch(backend, linker):
    backend.ignore_calls = True
    with pytest.raises(LinkVerificationFailed):
        linker.link(link_action())
    assert 1 == len(backend.submitted)


def test_pending_link_is_polled(backend, linker):
    # submitted by an earlier run that timed out
    reference = backend.submit(
        ContractCall(VAULT, VAULT_PROXY, "setOrderBook", (ORDER_BOOK_PROXY,))
    )
    previous = LinkRecord(
        network=NETWORK,
        link=f"{VAULT}.setOrderBook",
        source=VAULT,
        target=ORDER_BOOK,
        method="setOrderBook",
        status=DeploymentStatus.PENDING,
        tx_hash=reference,
    )
    result = linker.link(link_action(), previous=previous)
    assert LinkOutcome.LINKED == result.outcome
    assert reference == result.tx_hash
    assert 1 == len(backend.submitted)


def test_unresolved_link_argument(backend, linker):
    with pytest.raises(UnresolvedArgument):
        linker.link(link_action(args=("$EasySwapOrderBook",)))
    assert [] == backend.submitted


def test_resolve_link_action(registry, plan):
    (link,) = plan.links
    context = ResolutionContext(registry=registry, network=NETWORK, component_id=VAULT)

    with pytest.raises(DependencyNotReady):
        resolve_link_action(link, VAULT, context)

    for component, proxy in ((VAULT, VAULT_PROXY), (ORDER_BOOK, ORDER_BOOK_PROXY)):
        registry.record(
            NETWORK,
            component,
            DeploymentRecord(
                network=NETWORK,
                component=component,
                contract_type=component,
                status=DeploymentStatus.DEPLOYED,
                proxy=proxy,
            ),
        )

    action = resolve_link_action(link, VAULT, context)
    assert VAULT_PROXY == action.address
    assert (ORDER_BOOK_PROXY,) == action.args
    assert ORDER_BOOK_PROXY == action.expected
    assert "orderBook" == action.getter
