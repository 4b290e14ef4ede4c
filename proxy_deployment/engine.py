import time
from collections import OrderedDict
from enum import Enum
from typing import Dict, List, Optional, Tuple

from proxy_deployment.backend import Backend, StorageSlot
from proxy_deployment.constants import (
    DEFAULT_CONFIRMATION_TIMEOUT,
    EIP1967_ADMIN_SLOT,
    EIP1967_IMPLEMENTATION_SLOT,
)
from proxy_deployment.deployer import ProxyDeployer
from proxy_deployment.errors import (
    ConfirmationTimeoutError,
    DeploymentError,
    ExecutionError,
    SubmissionError,
    VerificationError,
)
from proxy_deployment.linker import Linker, resolve_link_action
from proxy_deployment.params import ResolutionContext, _resolve_params
from proxy_deployment.plan import ComponentSpec, ExecutionPlan, LinkSpec
from proxy_deployment.registry import (
    AddressRegistry,
    DeploymentRecord,
    DeploymentStatus,
    LinkRecord,
)
from proxy_deployment.utils import address_from_slot, same_value, to_json_value


class ComponentState(Enum):
    NOT_STARTED = "NotStarted"
    DEPLOYING = "Deploying"
    DEPLOYED = "Deployed"
    LINKING = "Linking"
    LINKED = "Linked"
    VERIFIED = "Verified"
    FAILED = "Failed"
    BLOCKED = "Blocked"


_STATE_FROM_STATUS = {
    DeploymentStatus.PENDING: ComponentState.DEPLOYING,
    DeploymentStatus.DEPLOYED: ComponentState.DEPLOYED,
    DeploymentStatus.LINKED: ComponentState.LINKED,
    DeploymentStatus.VERIFIED: ComponentState.VERIFIED,
    DeploymentStatus.FAILED: ComponentState.NOT_STARTED,
}

# states in which the component has a confirmed deployment and awaits links or verification
_DEPLOYED_STATES = (ComponentState.DEPLOYED, ComponentState.LINKING, ComponentState.LINKED)


class RunReport:
    """Per-component outcome of one run against one network."""

    def __init__(self, network: str, order: List[str]):
        self.network = network
        self.states: "OrderedDict[str, ComponentState]" = OrderedDict(
            (component, ComponentState.NOT_STARTED) for component in order
        )
        self.errors: Dict[str, DeploymentError] = dict()
        self.blocked_by: Dict[str, str] = dict()

    @property
    def successful(self) -> bool:
        return all(state is ComponentState.VERIFIED for state in self.states.values())

    @property
    def exit_code(self) -> int:
        return 0 if self.successful else 1

    def fail(self, component: str, error: DeploymentError) -> None:
        self.states[component] = ComponentState.FAILED
        self.errors[component] = error

    def block(self, component: str, blocker: str) -> None:
        self.states[component] = ComponentState.BLOCKED
        self.blocked_by[component] = blocker

    def failures(self) -> List[Tuple[str, str, str]]:
        """(component, kind, message) for every component that did not reach Verified."""
        failures = list()
        for component, state in self.states.items():
            if state is ComponentState.VERIFIED:
                continue
            error = self.errors.get(component)
            if error is not None:
                failures.append((component, error.kind, str(error)))
            elif state is ComponentState.BLOCKED:
                blocker = self.blocked_by.get(component)
                failures.append((component, "Blocked", f"waiting on {blocker}"))
            else:
                failures.append((component, state.value, "not verified"))
        return failures


class ExecutionEngine:
    """
    Drives a plan to completion on one network: deploys components in dependency
    order, runs link actions once their endpoints exist and verifies live proxy state.

    The registry is consulted before every side effect, so re-running a plan
    only performs the work that has not been confirmed yet.
    """

    def __init__(
        self,
        registry: AddressRegistry,
        backend: Backend,
        timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        autosign: bool = True,
        deployer: Optional[ProxyDeployer] = None,
        linker: Optional[Linker] = None,
    ):
        self.registry = registry
        self.backend = backend
        self.deployer = deployer or ProxyDeployer(backend, timeout=timeout, autosign=autosign)
        self.linker = linker or Linker(backend, timeout=timeout, autosign=autosign)

    def _context(self, network: str, component: str) -> ResolutionContext:
        return ResolutionContext(
            registry=self.registry,
            network=network,
            component_id=component,
            deployer_address=self.backend.deployer_address,
        )

    def _initial_state(self, plan: ExecutionPlan, network: str, component: str) -> ComponentState:
        record = self.registry.lookup(network, component)
        if record is None:
            return ComponentState.NOT_STARTED
        state = _STATE_FROM_STATUS[record.status]
        if state in (ComponentState.LINKED, ComponentState.VERIFIED):
            # links added to the plan after the component was verified
            unlinked = [
                link
                for link in plan.links_for(component)
                if not self.registry.is_linked(network, link.id)
            ]
            if unlinked:
                return ComponentState.DEPLOYED
        return state

    def _blocker(self, spec: ComponentSpec, network: str, report: RunReport) -> Optional[str]:
        for dependency in spec.dependencies:
            state = report.states[dependency]
            if state in (ComponentState.FAILED, ComponentState.BLOCKED):
                return dependency
            if not self.registry.is_satisfied(network, dependency, DeploymentStatus.DEPLOYED):
                return dependency
        return None

    #
    # Deployment
    #

    def _deploy(self, spec: ComponentSpec, network: str, report: RunReport) -> None:
        report.states[spec.id] = ComponentState.DEPLOYING
        previous = self.registry.lookup(network, spec.id)
        resolved_args = _resolve_params(spec.arguments, self._context(network, spec.id))

        def checkpoint(record: DeploymentRecord) -> None:
            self.registry.record(network, spec.id, record)

        try:
            record = self.deployer.deploy(
                spec, resolved_args, network, previous=previous, checkpoint=checkpoint
            )
        except ConfirmationTimeoutError as e:
            # the pending record was checkpointed at submission; the next run polls it
            report.errors[spec.id] = e
            print(f"(!) {spec.name} is pending: {e}")
            return
        except ExecutionError as e:
            if e.record is not None:
                self.registry.record(network, spec.id, e.record)
            report.fail(spec.id, e)
            print(f"(!) {spec.name} reverted: {e.reason}")
            return
        except SubmissionError as e:
            report.fail(spec.id, e)
            print(f"(!) {spec.name} rejected: {e}")
            return

        self.registry.record(network, spec.id, record)
        report.states[spec.id] = ComponentState.DEPLOYED

    #
    # Linking
    #

    def _link_is_ready(self, link: LinkSpec, network: str, report: RunReport) -> bool:
        for endpoint in link.endpoints:
            if report.states[endpoint] in (ComponentState.FAILED, ComponentState.BLOCKED):
                return False
            if not self.registry.is_satisfied(network, endpoint, DeploymentStatus.DEPLOYED):
                return False
        return True

    def _link(self, link: LinkSpec, plan: ExecutionPlan, network: str, report: RunReport) -> None:
        for endpoint in link.endpoints:
            if report.states[endpoint] is ComponentState.DEPLOYED:
                report.states[endpoint] = ComponentState.LINKING

        action = resolve_link_action(
            link, plan[link.source].contract_type, self._context(network, link.source)
        )
        args = [to_json_value(arg) for arg in action.args]

        def link_record(status: DeploymentStatus, **kwargs) -> LinkRecord:
            return LinkRecord(
                network=network,
                link=link.id,
                source=link.source,
                target=link.target,
                method=link.method,
                status=status,
                args=args,
                timestamp=int(time.time()),
                **kwargs,
            )

        def checkpoint(reference: str) -> None:
            self.registry.record_link(
                network, link.id, link_record(DeploymentStatus.PENDING, tx_hash=reference)
            )

        previous = self.registry.lookup_link(network, link.id)
        try:
            result = self.linker.link(action, previous=previous, checkpoint=checkpoint)
        except ConfirmationTimeoutError as e:
            report.errors[link.source] = e
            print(f"(!) {link.id} is pending: {e}")
            return
        except (SubmissionError, ExecutionError, VerificationError) as e:
            reference = getattr(e, "reference", None)
            self.registry.record_link(
                network,
                link.id,
                link_record(DeploymentStatus.FAILED, tx_hash=reference, error=str(e)),
            )
            report.fail(link.source, e)
            print(f"(!) {link.id} failed: {e}")
            return

        self.registry.record_link(
            network, link.id, link_record(DeploymentStatus.LINKED, tx_hash=result.tx_hash)
        )

    def _link_ready(self, plan: ExecutionPlan, network: str, report: RunReport) -> None:
        """Runs, in declaration order, every unfinished link whose endpoints are deployed."""
        for link in plan.links:
            if self.registry.is_linked(network, link.id):
                continue
            if self._link_is_ready(link, network, report):
                self._link(link, plan, network, report)

    #
    # Verification
    #

    def _verify(self, record: DeploymentRecord) -> None:
        """Checks the live EIP-1967 slots of a proxy against its registry record."""
        for label, slot, expected in (
            ("implementation", EIP1967_IMPLEMENTATION_SLOT, record.implementation),
            ("admin", EIP1967_ADMIN_SLOT, record.admin),
        ):
            live = address_from_slot(self.backend.read_state(record.proxy, StorageSlot(slot)))
            if not same_value(live, expected):
                raise VerificationError(
                    f"{record.component} proxy {record.proxy} has {label} {live}, "
                    f"registry has {expected}"
                )

    def _advance(
        self, network: str, record: DeploymentRecord, status: DeploymentStatus
    ) -> DeploymentRecord:
        if record.status.satisfies(status):
            return record
        record = record._replace(status=status, timestamp=int(time.time()))
        self.registry.record(network, record.component, record)
        return record

    def _promote(self, plan: ExecutionPlan, network: str, report: RunReport) -> None:
        """Marks components whose deployment and links are all done as linked, then verified."""
        for spec in plan:
            if report.states[spec.id] not in _DEPLOYED_STATES:
                continue
            links = plan.links_for(spec.id)
            if not all(self.registry.is_linked(network, link.id) for link in links):
                continue

            record = self.registry.lookup(network, spec.id)
            record = self._advance(network, record, DeploymentStatus.LINKED)
            report.states[spec.id] = ComponentState.LINKED
            try:
                self._verify(record)
            except VerificationError as e:
                report.fail(spec.id, e)
                print(f"(!) {spec.name} failed verification: {e}")
                continue
            self._advance(network, record, DeploymentStatus.VERIFIED)
            report.states[spec.id] = ComponentState.VERIFIED
            print(f"(i) {spec.name} verified at {record.proxy}")

    def run(self, plan: ExecutionPlan, network: str) -> RunReport:
        report = RunReport(network=network, order=plan.order)
        with self.registry.lock(network):
            for spec in plan:
                report.states[spec.id] = self._initial_state(plan, network, spec.id)

            for spec in plan:
                state = report.states[spec.id]
                if state is ComponentState.VERIFIED:
                    print(f"(i) {spec.name} already verified; skipping")
                    continue

                if state in (ComponentState.NOT_STARTED, ComponentState.DEPLOYING):
                    blocker = self._blocker(spec, network, report)
                    if blocker is not None:
                        report.block(spec.id, blocker)
                        print(f"(!) {spec.name} blocked by {blocker}")
                        continue
                    self._deploy(spec, network, report)
                    if report.states[spec.id] is not ComponentState.DEPLOYED:
                        continue

                self._link_ready(plan, network, report)
                self._promote(plan, network, report)

        return report
