from typing import Any, Optional

from ape import networks
from ape.api import AccountAPI, TransactionAPI
from ape.exceptions import ApeException, ContractLogicError
from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address, to_hex
from web3.exceptions import ContractLogicError as Web3ContractLogicError
from web3.exceptions import TimeExhausted, Web3Exception

from proxy_deployment.backend import (
    Backend,
    ContractCall,
    ContractCreation,
    Payload,
    ProxyCreation,
    Query,
    Receipt,
    StorageSlot,
    TxReference,
    ViewCall,
)
from proxy_deployment.errors import (
    ConfirmationTimeoutError,
    ExecutionReverted,
    SubmissionRejected,
)
from proxy_deployment.networks import get_contract_container, get_proxy_container


class ApeBackend(Backend):
    """
    Submits transactions signed by an ape account through the connected provider.

    Contract artifacts and calldata come from the ape project; submission,
    confirmation and storage reads go through the provider's web3 instance so
    that a transaction can be submitted once and polled across runs.
    """

    def __init__(self, account: AccountAPI, provider=None):
        self._account = account
        self._provider = provider or networks.provider

    @property
    def deployer_address(self) -> ChecksumAddress:
        return self._account.address

    @property
    def web3(self):
        return self._provider.web3

    def _serialize(self, payload: Payload) -> TransactionAPI:
        if isinstance(payload, ContractCreation):
            container = get_contract_container(payload.contract_type)
            return container.constructor.serialize_transaction(*payload.args)

        if isinstance(payload, ProxyCreation):
            container = get_contract_container(payload.contract_type)
            implementation = container.at(payload.implementation)
            initializer = getattr(implementation, payload.initializer)
            data = initializer.encode_input(*payload.args)
            proxy_container = get_proxy_container()
            return proxy_container.constructor.serialize_transaction(
                payload.implementation, payload.owner, data
            )

        if isinstance(payload, ContractCall):
            instance = get_contract_container(payload.contract_type).at(payload.address)
            method = getattr(instance, payload.method)
            return method.as_transaction(*payload.args, sender=self._account)

        raise TypeError(f"Unsupported payload {payload!r}")

    def submit(self, payload: Payload) -> TxReference:
        try:
            txn = self._serialize(payload)
            txn.sender = self._account.address
            txn = self._account.prepare_transaction(txn)
        except ContractLogicError as e:
            # the transaction would revert; gas estimation replays it
            raise ExecutionReverted(reason=e.revert_message or str(e)) from e
        except (ApeException, ValueError) as e:
            raise SubmissionRejected(f"Cannot build transaction for {payload!r}: {e}") from e

        signed_txn = self._account.sign_transaction(txn)
        if signed_txn is None:
            raise SubmissionRejected(f"Signing declined for {payload!r}")

        try:
            tx_hash = self.web3.eth.send_raw_transaction(signed_txn.serialize_transaction())
        except (Web3Exception, ValueError) as e:
            raise SubmissionRejected(str(e)) from e
        return to_hex(tx_hash)

    def _revert_reason(self, reference: TxReference, block_number: int) -> str:
        """Replays a reverted transaction at its parent block to recover the revert reason."""
        txn = self.web3.eth.get_transaction(reference)
        params = {"from": txn["from"], "data": txn["input"], "value": txn["value"]}
        if txn.get("to"):
            params["to"] = txn["to"]
        try:
            self.web3.eth.call(params, block_identifier=max(block_number - 1, 0))
        except Web3ContractLogicError as e:
            return str(e)
        return "execution reverted"

    def wait_for_confirmation(self, reference: TxReference, timeout: float) -> Receipt:
        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(reference, timeout=timeout)
        except TimeExhausted as e:
            raise ConfirmationTimeoutError(reference=reference, timeout=timeout) from e

        if receipt["status"] == 0:
            reason = self._revert_reason(reference, receipt["blockNumber"])
            raise ExecutionReverted(reason=reason, reference=reference)

        contract_address: Optional[str] = receipt.get("contractAddress")
        return Receipt(
            tx_hash=reference,
            block_number=receipt["blockNumber"],
            contract_address=to_checksum_address(contract_address) if contract_address else None,
        )

    def read_state(self, address: ChecksumAddress, query: Query) -> Any:
        if isinstance(query, StorageSlot):
            return bytes(self.web3.eth.get_storage_at(address, query.slot))

        if isinstance(query, ViewCall):
            instance = get_contract_container(query.contract_type).at(address)
            return getattr(instance, query.method)(*query.args)

        raise TypeError(f"Unsupported query {query!r}")
