from pathlib import Path

import click

from proxy_deployment.constants import ARTIFACTS_DIR, DEFAULT_CONFIRMATION_TIMEOUT
from proxy_deployment.types import BasisPoints, MinInt, NonEmptyString

network_option = click.option(
    "--network",
    "-n",
    help="Network choice, e.g. ethereum:sepolia:alchemy; registry key is ecosystem:network.",
    envvar="NETWORK",
    type=click.STRING,
    required=True,
)

rpc_url_option = click.option(
    "--rpc-url",
    help="RPC endpoint URL for the target network.",
    envvar="RPC_URL",
    type=click.STRING,
    required=False,
)

params_filepath_option = click.option(
    "--params-filepath",
    "-p",
    help="Deployment params YAML file.",
    type=click.Path(dir_okay=False, exists=True, path_type=Path),
    required=True,
)

registry_dir_option = click.option(
    "--registry-dir",
    "-r",
    help="Directory holding the per-network deployment registries.",
    type=click.Path(file_okay=False, path_type=Path),
    default=ARTIFACTS_DIR,
    show_default=True,
)

account_option = click.option(
    "--account",
    "-a",
    "account_aliases",
    help="ape account alias; repeatable, the first one signs every transaction.",
    envvar="DEPLOYER_ACCOUNTS",
    multiple=True,
    type=click.STRING,
)

protocol_fee_option = click.option(
    "--protocol-fee",
    help="Protocol fee in basis points; overrides the params file.",
    type=BasisPoints(),
    required=False,
)

eip712_name_option = click.option(
    "--eip712-name",
    help="EIP-712 domain name; overrides the params file.",
    type=NonEmptyString(),
    required=False,
)

eip712_version_option = click.option(
    "--eip712-version",
    help="EIP-712 domain version; overrides the params file.",
    type=NonEmptyString(),
    required=False,
)

timeout_option = click.option(
    "--timeout",
    "-t",
    help="Seconds to wait for each transaction to be confirmed.",
    type=MinInt(1),
    default=DEFAULT_CONFIRMATION_TIMEOUT,
    show_default=True,
)

autosign_option = click.option(
    "--autosign",
    help="Sign transactions without interactive confirmation.",
    is_flag=True,
    default=False,
)

verify_option = click.option(
    "--verify",
    help="Publish implementation sources to the block explorer after a successful run.",
    is_flag=True,
    default=False,
)
