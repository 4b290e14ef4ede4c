import time
import typing
from collections import OrderedDict
from typing import Callable, Optional, Tuple

from proxy_deployment.backend import (
    Backend,
    ContractCreation,
    Payload,
    ProxyCreation,
    Receipt,
    StorageSlot,
)
from proxy_deployment.confirm import confirm_initializer
from proxy_deployment.constants import (
    DEFAULT_CONFIRMATION_TIMEOUT,
    EIP1967_ADMIN_SLOT,
    IMPLEMENTATION_STAGE,
    PROXY_CONTRACT_TYPE,
    PROXY_STAGE,
)
from proxy_deployment.errors import ConfirmationTimeoutError, ExecutionError, ExecutionReverted
from proxy_deployment.params import check_resolved
from proxy_deployment.plan import ComponentSpec
from proxy_deployment.registry import DeploymentRecord, DeploymentStatus
from proxy_deployment.utils import address_from_slot, to_json_value

Checkpoint = Callable[[DeploymentRecord], None]


def _no_checkpoint(record: DeploymentRecord) -> None:
    pass


class ProxyDeployer:
    """
    Deploys one upgradeable component: an implementation contract followed by a
    transparent proxy whose constructor runs the component's initializer.
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

    def _starting_record(
        self,
        spec: ComponentSpec,
        network: str,
        init_args: typing.Dict,
        previous: Optional[DeploymentRecord],
    ) -> DeploymentRecord:
        fresh = DeploymentRecord(
            network=network,
            component=spec.id,
            contract_type=spec.contract_type,
            status=DeploymentStatus.PENDING,
            init_args=init_args,
            deployer=self.backend.deployer_address,
            timestamp=int(time.time()),
        )
        if previous is None or previous.status not in (
            DeploymentStatus.PENDING,
            DeploymentStatus.FAILED,
        ):
            return fresh

        resumable = (
            previous.status is DeploymentStatus.PENDING
            and previous.contract_type == spec.contract_type
            and previous.init_args == init_args
        )
        if resumable:
            return previous

        # the implementation does not depend on initializer arguments and can be reused
        if previous.implementation and previous.contract_type == spec.contract_type:
            fresh = fresh._replace(implementation=previous.implementation)
            reference = previous.reference(IMPLEMENTATION_STAGE)
            if reference:
                fresh = fresh.with_reference(IMPLEMENTATION_STAGE, reference)
        return fresh

    @staticmethod
    def _failed(record: DeploymentRecord, stage: str, reason: str) -> DeploymentRecord:
        tx_hashes = {k: v for k, v in (record.tx_hashes or dict()).items() if k != stage}
        return record._replace(
            status=DeploymentStatus.FAILED,
            error=reason,
            tx_hashes=tx_hashes,
            timestamp=int(time.time()),
        )

    def _confirm_stage(
        self, record: DeploymentRecord, stage: str, payload: Payload, checkpoint: Checkpoint
    ) -> Tuple[Receipt, DeploymentRecord]:
        """Submits (or resumes) a single deployment transaction and waits for it."""
        reference = record.reference(stage)
        if reference is None:
            try:
                reference = self.backend.submit(payload)
            except ExecutionError as e:
                failed = self._failed(record, stage, e.reason)
                raise ExecutionReverted(reason=e.reason, record=failed) from e
            record = record.with_reference(stage, reference)
            checkpoint(record)
        else:
            print(f"(i) Resuming {stage} transaction {reference} for {record.component}")

        try:
            receipt = self.backend.wait_for_confirmation(reference, self.timeout)
        except ConfirmationTimeoutError as e:
            raise ConfirmationTimeoutError(
                reference=reference, timeout=self.timeout, record=record
            ) from e
        except ExecutionError as e:
            failed = self._failed(record, stage, e.reason)
            raise ExecutionReverted(reason=e.reason, reference=reference, record=failed) from e
        return receipt, record

    def deploy(
        self,
        spec: ComponentSpec,
        resolved_args: "OrderedDict[str, typing.Any]",
        network: str,
        previous: Optional[DeploymentRecord] = None,
        checkpoint: Optional[Checkpoint] = None,
    ) -> DeploymentRecord:
        check_resolved(spec.id, resolved_args)
        if not self.autosign:
            confirm_initializer(
                spec.name,
                spec.contract_type,
                spec.initializer,
                resolved_args,
                deployer=self.backend.deployer_address,
            )

        checkpoint = checkpoint or _no_checkpoint
        init_args = {name: to_json_value(value) for name, value in resolved_args.items()}
        record = self._starting_record(spec, network, init_args, previous)

        if record.implementation is None:
            print(f"\nDeploying {spec.contract_type} implementation for {spec.name}.")
            receipt, record = self._confirm_stage(
                record, IMPLEMENTATION_STAGE, ContractCreation(spec.contract_type), checkpoint
            )
            record = record._replace(implementation=receipt.contract_address)

        print(
            f"\nDeploying {PROXY_CONTRACT_TYPE} for {spec.name} "
            f"with {spec.initializer}({', '.join(map(str, resolved_args.values()))})."
        )
        payload = ProxyCreation(
            contract_type=spec.contract_type,
            implementation=record.implementation,
            owner=self.backend.deployer_address,
            initializer=spec.initializer,
            args=tuple(resolved_args.values()),
        )
        receipt, record = self._confirm_stage(record, PROXY_STAGE, payload, checkpoint)

        proxy = receipt.contract_address
        admin = address_from_slot(self.backend.read_state(proxy, StorageSlot(EIP1967_ADMIN_SLOT)))
        print(
            f"{spec.name} deployed at {proxy} "
            f"(implementation {record.implementation}, admin {admin})"
        )
        return record._replace(
            status=DeploymentStatus.DEPLOYED,
            proxy=proxy,
            admin=admin,
            error=None,
            timestamp=int(time.time()),
        )
