from enum import Enum
from typing import Any, Callable, NamedTuple, Optional, Tuple

from eth_typing import ChecksumAddress

from proxy_deployment.backend import Backend, ContractCall, TxReference, ViewCall
from proxy_deployment.confirm import confirm_link
from proxy_deployment.constants import DEFAULT_CONFIRMATION_TIMEOUT
from proxy_deployment.errors import DependencyNotReady, LinkVerificationFailed
from proxy_deployment.params import ResolutionContext, _resolve_param, check_resolved_list
from proxy_deployment.plan import LinkSpec
from proxy_deployment.registry import DeploymentStatus, LinkRecord
from proxy_deployment.utils import same_value


class LinkOutcome(Enum):
    ALREADY_LINKED = "already-linked"
    LINKED = "linked"


class LinkResult(NamedTuple):
    outcome: LinkOutcome
    tx_hash: Optional[TxReference] = None


class LinkAction(NamedTuple):
    """A LinkSpec resolved against deployed addresses."""

    id: str
    source: str
    target: str
    contract_type: str
    address: ChecksumAddress
    method: str
    getter: str
    args: Tuple[Any, ...]
    expected: Any


def resolve_link_action(
    link: LinkSpec, contract_type: str, context: ResolutionContext
) -> LinkAction:
    registry, network = context.registry, context.network
    for endpoint in link.endpoints:
        if not registry.is_satisfied(network, endpoint, DeploymentStatus.DEPLOYED):
            raise DependencyNotReady(component=link.id, dependency=endpoint)

    return LinkAction(
        id=link.id,
        source=link.source,
        target=link.target,
        contract_type=contract_type,
        address=registry.lookup(network, link.source).proxy,
        method=link.method,
        getter=link.getter,
        args=tuple(_resolve_param(arg, context) for arg in link.args),
        expected=_resolve_param(link.expected, context),
    )


class Linker:
    """
    Performs a single cross-wiring call, e.g. registering the order book inside the vault.

    Idempotent: the live value is read first and nothing is submitted when it
    already matches. A submitted call only counts as linked once a read-back
    of the getter shows the intended value.
    """

    def __init__(
        self,
        backend: Backend,
        timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        autosign: bool = True,
    ):
        self.backend = backend
        self.timeout = timeout
        self.autosign = autosign

    def _read(self, action: LinkAction) -> Any:
        query = ViewCall(contract_type=action.contract_type, method=action.getter)
        return self.backend.read_state(action.address, query)

    def _submit(self, action: LinkAction) -> TxReference:
        pretty_args = ", ".join(str(arg) for arg in action.args)
        print(
            f"\nTransacting {action.contract_type}[{action.address[:10]}]"
            f".{action.method}({pretty_args})"
        )
        if not self.autosign:
            confirm_link(action.source, action.method, action.target, action.args)
        payload = ContractCall(
            contract_type=action.contract_type,
            address=action.address,
            method=action.method,
            args=action.args,
        )
        return self.backend.submit(payload)

    def link(
        self,
        action: LinkAction,
        previous: Optional[LinkRecord] = None,
        checkpoint: Optional[Callable[[TxReference], None]] = None,
    ) -> LinkResult:
        check_resolved_list(action.id, [*action.args, action.expected])

        if same_value(self._read(action), action.expected):
            print(f"(i) {action.source}.{action.getter}() already returns {action.expected}")
            return LinkResult(outcome=LinkOutcome.ALREADY_LINKED)

        reference = None
        if previous is not None and previous.status is DeploymentStatus.PENDING:
            reference = previous.tx_hash
        if reference is None:
            reference = self._submit(action)
            if checkpoint is not None:
                checkpoint(reference)
        else:
            print(f"(i) Resuming {action.id} transaction {reference}")

        self.backend.wait_for_confirmation(reference, self.timeout)

        current = self._read(action)
        if not same_value(current, action.expected):
            raise LinkVerificationFailed(
                f"{action.source}.{action.getter}() returned {current} after {action.method}, "
                f"expected {action.expected}"
            )
        print(f"{action.source}.{action.getter}() set to {current}")
        return LinkResult(outcome=LinkOutcome.LINKED, tx_hash=reference)
