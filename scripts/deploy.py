#!/usr/bin/python3

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Tuple

import click
from ape import accounts, networks
from ape.cli.choices import select_account
from dotenv import load_dotenv

from proxy_deployment.ape_backend import ApeBackend
from proxy_deployment.backend import Backend
from proxy_deployment.config import DeploymentConfig
from proxy_deployment.engine import ExecutionEngine, RunReport
from proxy_deployment.errors import ConfigurationError, DeploymentError
from proxy_deployment.networks import (
    check_chain_id,
    check_etherscan_plugin,
    is_local_network,
    network_choice,
    verify_contracts,
)
from proxy_deployment.options import (
    account_option,
    autosign_option,
    eip712_name_option,
    eip712_version_option,
    network_option,
    params_filepath_option,
    protocol_fee_option,
    registry_dir_option,
    rpc_url_option,
    timeout_option,
    verify_option,
)
from proxy_deployment.plan import plan_from_config
from proxy_deployment.registry import AddressRegistry
from proxy_deployment.utils import network_key

# credentials and endpoints may live in a local .env file
load_dotenv()


def _load_signers(account_aliases: Tuple[str, ...], autosign: bool):
    """Loads the signing accounts; the first one is the deployer."""
    if account_aliases:
        signers = [accounts.load(alias) for alias in account_aliases]
        if autosign:
            print("WARNING: Autosign is enabled. Transactions will be signed automatically.")
            for signer in signers:
                signer.set_autosign(True)
        return signers
    if is_local_network():
        return [accounts.test_accounts[0]]
    return [select_account()]


@contextmanager
def connected_backend(
    network: str,
    rpc_url: Optional[str],
    account_aliases: Tuple[str, ...],
    autosign: bool,
    chain_id: Optional[int],
) -> Iterator[Backend]:
    with networks.parse_network_choice(network_choice(network, rpc_url)):
        check_chain_id(chain_id)
        signers = _load_signers(account_aliases, autosign)
        deployer = signers[0]
        click.secho(f"Deployer: {deployer.address}", fg="yellow")
        for signer in signers[1:]:
            click.secho(f"Additional signer (unused): {signer.address}", fg="yellow")
        yield ApeBackend(account=deployer)


def _display_report(report: RunReport) -> None:
    click.secho(f"\n{report.network}", fg="green")
    for component, state in report.states.items():
        color = "cyan" if report.errors.get(component) is None else "red"
        click.secho(f"    {component}: {state.value}", fg=color)

    for component, kind, message in report.failures():
        click.secho(f"{component}: {kind}: {message}", fg="red", err=True)


@click.command(name="deploy")
@network_option
@rpc_url_option
@params_filepath_option
@registry_dir_option
@account_option
@protocol_fee_option
@eip712_name_option
@eip712_version_option
@timeout_option
@autosign_option
@verify_option
@click.pass_context
def cli(
    ctx,
    network: str,
    rpc_url: Optional[str],
    params_filepath: Path,
    registry_dir: Path,
    account_aliases: Tuple[str, ...],
    protocol_fee: Optional[int],
    eip712_name: Optional[str],
    eip712_version: Optional[str],
    timeout: int,
    autosign: bool,
    verify: bool,
):
    """Deploy the upgradeable components of a params file and wire them together."""
    try:
        config = DeploymentConfig.from_yaml(
            params_filepath,
            protocol_fee=protocol_fee,
            eip712_name=eip712_name,
            eip712_version=eip712_version,
        )
        plan = plan_from_config(config)
    except ConfigurationError as e:
        raise click.ClickException(f"{e.kind}: {e}")

    click.secho(f"Deployment order: {' -> '.join(plan.order)}", fg="green")
    registry = AddressRegistry(registry_dir)
    registry_network = network_key(network)

    try:
        with connected_backend(
            network, rpc_url, account_aliases, autosign, config.chain_id
        ) as backend:
            if verify:
                check_etherscan_plugin()
            engine = ExecutionEngine(registry, backend, timeout=timeout, autosign=autosign)
            report = engine.run(plan, registry_network)
            if verify and report.successful:
                implementations = [
                    registry.lookup(registry_network, c).implementation for c in plan.order
                ]
                verify_contracts(implementations)
    except DeploymentError as e:
        raise click.ClickException(f"{e.kind}: {e}")

    _display_report(report)
    ctx.exit(report.exit_code)


if __name__ == "__main__":
    cli()
