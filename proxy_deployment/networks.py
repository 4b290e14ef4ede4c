import os
from typing import Iterable, Optional

from ape import networks, project
from ape.api.networks import LOCAL_NETWORK_NAME
from ape.contracts import ContractContainer
from ape_etherscan.utils import API_KEY_ENV_KEY_MAP
from eth_typing import ChecksumAddress

from proxy_deployment.constants import (
    OZ_DEPENDENCY_NAME,
    OZ_DEPENDENCY_VERSION,
    PROXY_CONTRACT_TYPE,
)
from proxy_deployment.errors import ConfigurationError
from proxy_deployment.utils import network_key


def is_local_network() -> bool:
    return networks.provider.network.name == LOCAL_NETWORK_NAME


def network_choice(network: str, rpc_url: Optional[str] = None) -> str:
    """
    Returns the ape network choice to connect with. An RPC url is appended
    as the provider, which ape treats as a custom node connection.
    """
    if not rpc_url:
        return network
    return f"{network_key(network)}:{rpc_url}"


def check_chain_id(expected_chain_id: Optional[int]) -> None:
    """Checks that the params file targets the connected chain."""
    if expected_chain_id is None or is_local_network():
        return
    connected_chain_id = networks.provider.network.chain_id
    if int(expected_chain_id) != connected_chain_id:
        raise ConfigurationError(
            f"chain_id in params file ({expected_chain_id}) does not match "
            f"chain_id of current network ({connected_chain_id})."
        )


def check_etherscan_plugin() -> None:
    """
    Checks that the ape-etherscan plugin is usable and that
    the appropriate API key environment variable is set.
    """
    if is_local_network():
        # unnecessary for local deployment
        return
    ecosystem_name = networks.provider.network.ecosystem.name
    explorer_envvar = API_KEY_ENV_KEY_MAP.get(ecosystem_name)
    if not explorer_envvar or not os.environ.get(explorer_envvar):
        raise ConfigurationError(f"{explorer_envvar or 'Explorer API key'} is not set.")


def verify_contracts(addresses: Iterable[ChecksumAddress]) -> None:
    explorer = networks.provider.network.explorer
    for address in addresses:
        print(f"(i) Verifying {address}...")
        explorer.publish_contract(address)


def _get_dependency_contract_container(contract: str) -> ContractContainer:
    for dependency_name, dependency_versions in project.dependencies.items():
        if len(dependency_versions) > 1:
            raise ValueError(f"Ambiguous {dependency_name} dependency for {contract}")
        try:
            dependency_api = list(dependency_versions.values())[0]
            contract_container = getattr(dependency_api, contract)
            return contract_container
        except AttributeError:
            continue
    raise ValueError(f"No contract found with name '{contract}'.")


def get_contract_container(contract: str) -> ContractContainer:
    try:
        contract_container = getattr(project, contract)
    except AttributeError:
        # not in root project; check dependencies
        contract_container = _get_dependency_contract_container(contract)

    return contract_container


def get_proxy_container() -> ContractContainer:
    oz_dependency = project.dependencies[OZ_DEPENDENCY_NAME][OZ_DEPENDENCY_VERSION]
    return getattr(oz_dependency, PROXY_CONTRACT_TYPE)
