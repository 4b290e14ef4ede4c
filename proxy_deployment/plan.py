import heapq
from collections import OrderedDict, defaultdict
from typing import Any, Dict, Iterable, Iterator, List, NamedTuple, Tuple

from proxy_deployment.config import DeploymentConfig
from proxy_deployment.constants import DEFAULT_INITIALIZER
from proxy_deployment.errors import ConfigurationError, CyclicDependency, UnknownDependency
from proxy_deployment.params import (
    VariableContext,
    _process_raw_value,
    _process_raw_values,
    referenced_components,
)

COMPONENT_KEYS = {"name", "contract_type", "depends_on", "initializer", "initializer_args", "links"}
LINK_KEYS = {"method", "getter", "args", "target", "expected"}


class LinkSpec(NamedTuple):
    """
    A post-deployment call on ``source`` that registers ``target`` inside it,
    e.g. ``EasySwapVault.setOrderBook($EasySwapOrderBook)``. ``getter`` reads the
    live cross reference back and is compared against ``expected``.
    """

    source: str
    target: str
    method: str
    getter: str
    args: Tuple[Any, ...] = ()
    expected: Any = None

    @property
    def id(self) -> str:
        return f"{self.source}.{self.method}"

    @property
    def endpoints(self) -> Tuple[str, str]:
        return self.source, self.target


class ComponentSpec(NamedTuple):
    """Static description of one upgradeable component."""

    id: str
    name: str
    contract_type: str
    dependencies: Tuple[str, ...] = ()
    initializer: str = DEFAULT_INITIALIZER
    initializer_args: Tuple[Tuple[str, Any], ...] = ()
    links: Tuple[LinkSpec, ...] = ()

    @property
    def arguments(self) -> "OrderedDict[str, Any]":
        return OrderedDict(self.initializer_args)


class ExecutionPlan:
    """Components in an order where every dependency precedes its dependents."""

    def __init__(self, components: Iterable[ComponentSpec], links: Iterable[LinkSpec]):
        self.components: Tuple[ComponentSpec, ...] = tuple(components)
        self.links: Tuple[LinkSpec, ...] = tuple(links)
        self._by_id = {spec.id: spec for spec in self.components}

    def __iter__(self) -> Iterator[ComponentSpec]:
        return iter(self.components)

    def __len__(self) -> int:
        return len(self.components)

    def __getitem__(self, component_id: str) -> ComponentSpec:
        return self._by_id[component_id]

    @property
    def order(self) -> List[str]:
        return [spec.id for spec in self.components]

    def links_for(self, component_id: str) -> List[LinkSpec]:
        """Links sourced from or targeting a component, in declaration order."""
        return [link for link in self.links if component_id in link.endpoints]


def _cycle_members(remaining: Dict[str, ComponentSpec]) -> List[str]:
    """Strips components that merely depend on a cycle, leaving the cycle participants."""
    members = dict(remaining)
    while True:
        depended_on = {d for spec in members.values() for d in spec.dependencies if d in members}
        leaves = [component_id for component_id in members if component_id not in depended_on]
        if not leaves:
            return list(members)
        for leaf in leaves:
            del members[leaf]


def build_plan(specs: Iterable[ComponentSpec]) -> ExecutionPlan:
    """
    Topologically sorts component specs (Kahn's algorithm).
    Ties are broken by declaration order so that re-runs produce identical plans.
    """
    specs = list(specs)
    by_id: "OrderedDict[str, ComponentSpec]" = OrderedDict()
    for spec in specs:
        if spec.id in by_id:
            raise ConfigurationError(f"Duplicate component '{spec.id}'")
        by_id[spec.id] = spec

    for spec in specs:
        for dependency in spec.dependencies:
            if dependency not in by_id:
                raise UnknownDependency(component=spec.id, dependency=dependency)
        for link in spec.links:
            for endpoint in link.endpoints:
                if endpoint not in by_id:
                    raise UnknownDependency(component=spec.id, dependency=endpoint)

    position = {component_id: index for index, component_id in enumerate(by_id)}
    in_degree = {spec.id: len(set(spec.dependencies)) for spec in specs}
    dependents = defaultdict(list)
    for spec in specs:
        for dependency in set(spec.dependencies):
            dependents[dependency].append(spec.id)

    ready = [position[component_id] for component_id, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    ordered = list()
    while ready:
        spec = specs[heapq.heappop(ready)]
        ordered.append(spec)
        for dependent in dependents[spec.id]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, position[dependent])

    if len(ordered) != len(specs):
        placed = {spec.id for spec in ordered}
        remaining = OrderedDict((k, v) for k, v in by_id.items() if k not in placed)
        raise CyclicDependency(_cycle_members(remaining))

    links = [link for spec in specs for link in spec.links]
    return ExecutionPlan(components=ordered, links=links)


#
# Params file
#


def _component_entries(contracts: List[Any]) -> List[Tuple[str, Dict]]:
    entries = list()
    for contract_info in contracts:
        if isinstance(contract_info, str):
            entries.append((contract_info, dict()))
        elif isinstance(contract_info, dict) and len(contract_info) == 1:
            component_id = list(contract_info.keys())[0]  # only one entry
            component_data = contract_info[component_id] or dict()
            if not isinstance(component_data, dict):
                raise ConfigurationError(f"Malformed params for {component_id}.")
            entries.append((component_id, component_data))
        else:
            raise ConfigurationError("Malformed contracts entry in params file.")
    return entries


def _link_spec(source: str, raw_link: Any, context: VariableContext) -> LinkSpec:
    if not isinstance(raw_link, dict):
        raise ConfigurationError(f"Malformed link for {source}.")
    unknown_keys = set(raw_link) - LINK_KEYS
    if unknown_keys:
        unknown = ", ".join(sorted(unknown_keys))
        raise ConfigurationError(f"Unknown link keys for {source}: {unknown}")
    for key in ("method", "getter"):
        if not raw_link.get(key):
            raise ConfigurationError(f"Link for {source} is missing '{key}'.")

    raw_args = raw_link.get("args") or list()
    if not isinstance(raw_args, list):
        raise ConfigurationError(f"Link args for {source}.{raw_link['method']} must be a list.")
    args = _process_raw_value(raw_args, context)

    target = raw_link.get("target")
    if target is None:
        references = referenced_components(args)
        if not references:
            raise ConfigurationError(
                f"Link {source}.{raw_link['method']} does not reference another component."
            )
        target = references[0]
    if target == source:
        raise ConfigurationError(f"Link {source}.{raw_link['method']} cannot target itself.")

    if "expected" in raw_link:
        expected = _process_raw_value(raw_link["expected"], context)
    elif len(args) == 1:
        expected = args[0]
    else:
        raise ConfigurationError(
            f"Link {source}.{raw_link['method']} needs an 'expected' value "
            f"for '{raw_link['getter']}'."
        )

    return LinkSpec(
        source=source,
        target=target,
        method=raw_link["method"],
        getter=raw_link["getter"],
        args=tuple(args),
        expected=expected,
    )


def _component_spec(
    component_id: str, data: Dict, component_ids: List[str], constants: Dict
) -> ComponentSpec:
    unknown_keys = set(data) - COMPONENT_KEYS
    if unknown_keys:
        raise ConfigurationError(
            f"Unknown keys for {component_id}: {', '.join(sorted(unknown_keys))}"
        )
    context = VariableContext(
        component_ids=component_ids, component_id=component_id, constants=constants
    )

    raw_args = data.get("initializer_args") or dict()
    if not isinstance(raw_args, dict):
        raise ConfigurationError(f"initializer_args for {component_id} must be a mapping.")
    initializer_args = _process_raw_values(raw_args, context)

    depends_on = data.get("depends_on") or list()
    if not isinstance(depends_on, list):
        raise ConfigurationError(f"depends_on for {component_id} must be a list.")
    dependencies = list()
    for dependency in [*depends_on, *referenced_components(initializer_args)]:
        if dependency not in dependencies:
            dependencies.append(dependency)

    links = tuple(_link_spec(component_id, raw, context) for raw in data.get("links") or list())
    return ComponentSpec(
        id=component_id,
        name=data.get("name", component_id),
        contract_type=data.get("contract_type", component_id),
        dependencies=tuple(dependencies),
        initializer=data.get("initializer", DEFAULT_INITIALIZER),
        initializer_args=tuple(initializer_args.items()),
        links=links,
    )


def specs_from_config(config: DeploymentConfig) -> List[ComponentSpec]:
    print("Processing component parameters...")
    entries = _component_entries(config.contracts)
    component_ids = [component_id for component_id, _ in entries]
    return [
        _component_spec(component_id, data, component_ids, config.constants)
        for component_id, data in entries
    ]


def plan_from_config(config: DeploymentConfig) -> ExecutionPlan:
    return build_plan(specs_from_config(config))

