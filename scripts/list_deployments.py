#!/usr/bin/python3

from pathlib import Path
from typing import List

import click

from proxy_deployment.errors import ConfigurationError
from proxy_deployment.options import network_option, registry_dir_option
from proxy_deployment.registry import AddressRegistry, DeploymentRecord, DeploymentStatus
from proxy_deployment.utils import network_key

STATUS_COLORS = {
    DeploymentStatus.PENDING: "yellow",
    DeploymentStatus.DEPLOYED: "cyan",
    DeploymentStatus.LINKED: "cyan",
    DeploymentStatus.VERIFIED: "green",
    DeploymentStatus.FAILED: "red",
}


def _display_records(component: str, records: List[DeploymentRecord]) -> None:
    """Display the deployment records of one component, most recent last."""
    click.secho(f"    {component}", fg="yellow")
    for index, record in enumerate(records, start=1):
        line = f"        {index}. {record.status.value} proxy={record.proxy}"
        if record.implementation:
            line += f" implementation={record.implementation}"
        if record.error:
            line += f" error={record.error}"
        click.secho(line, fg=STATUS_COLORS[record.status])


@click.command(name="list-deployments")
@network_option
@registry_dir_option
@click.option(
    "--history",
    help="Show every recorded attempt, not only the current record.",
    is_flag=True,
    default=False,
)
def cli(network: str, registry_dir: Path, history: bool):
    """List the deployments and links recorded for a network."""
    registry = AddressRegistry(registry_dir)
    network = network_key(network)
    try:
        components = registry.components(network)
    except ConfigurationError as e:
        raise click.ClickException(f"{e.kind}: {e}")
    if not components:
        click.secho(f"No deployments recorded for {network}", fg="yellow")
        return

    click.secho(f"\n{network} ({registry.filepath(network)})", fg="green")
    for component in components:
        records = registry.history(network, component)
        _display_records(component, records if history else records[-1:])

    links = registry.links(network)
    if links:
        click.secho("\n    Links", fg="green")
    for link in links:
        record = registry.lookup_link(network, link)
        click.secho(
            f"        {link} -> {record.target}: {record.status.value}",
            fg=STATUS_COLORS[record.status],
        )


if __name__ == "__main__":
    cli()
