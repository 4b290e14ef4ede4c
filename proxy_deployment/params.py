import typing
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Iterable, List, Optional

from proxy_deployment.errors import (
    ConfigurationError,
    DependencyNotReady,
    UnknownDependency,
    UnresolvedArgument,
)
from proxy_deployment.registry import AddressRegistry, DeploymentStatus


class VariableContext:
    """Plan-authoring context: which names a placeholder may refer to."""

    def __init__(
        self,
        component_ids: List[str],
        component_id: str,
        constants: typing.Dict[str, Any] = None,
    ):
        self.component_ids = component_ids or list()
        self.component_id = component_id
        self.constants = constants or dict()


class ResolutionContext(typing.NamedTuple):
    """Run-time context: where placeholder values come from."""

    registry: AddressRegistry
    network: str
    component_id: str
    deployer_address: Optional[str] = None


# Variables


class Variable(ABC):
    VARIABLE_PREFIX = "$"

    @abstractmethod
    def resolve(self, context: ResolutionContext) -> Any:
        raise NotImplementedError

    @classmethod
    def is_variable(cls, param: Any) -> bool:
        """Returns True if the param is a variable."""
        result = isinstance(param, str) and param.startswith(cls.VARIABLE_PREFIX)
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self})"


class DeployerAccount(Variable):
    DEPLOYER_INDICATOR = "deployer"

    @classmethod
    def is_deployer(cls, value: str) -> bool:
        """Returns True if the variable is a special deployer variable."""
        return value == cls.DEPLOYER_INDICATOR

    def resolve(self, context: ResolutionContext) -> Any:
        if context.deployer_address is None:
            raise ConfigurationError("$deployer used but no deployer account is available")
        return context.deployer_address

    def __str__(self) -> str:
        return f"{self.VARIABLE_PREFIX}{self.DEPLOYER_INDICATOR}"


class Constant(Variable):
    def __init__(self, constant_name: str, context: VariableContext):
        try:
            self.constant_value = context.constants[constant_name]
        except KeyError:
            raise ConfigurationError(f"Constant '{constant_name}' not found in deployment file.")
        self.constant_name = constant_name

    @classmethod
    def is_constant(cls, value: str) -> bool:
        """Returns True if the variable is a deployment constant."""
        return value.isupper()

    def resolve(self, context: ResolutionContext) -> Any:
        return self.constant_value

    def __str__(self) -> str:
        return f"{self.VARIABLE_PREFIX}{self.constant_name}"


class ComponentAddress(Variable):
    """The proxy address of another component of the same plan."""

    def __init__(self, component_id: str, context: VariableContext):
        if component_id not in context.component_ids:
            raise UnknownDependency(component=context.component_id, dependency=component_id)
        self.component_id = component_id

    def resolve(self, context: ResolutionContext) -> Any:
        satisfied = context.registry.is_satisfied(
            context.network, self.component_id, DeploymentStatus.DEPLOYED
        )
        if not satisfied:
            raise DependencyNotReady(component=context.component_id, dependency=self.component_id)
        return context.registry.lookup(context.network, self.component_id).proxy

    def __str__(self) -> str:
        return f"{self.VARIABLE_PREFIX}{self.component_id}"


def _variable_from_value(variable: str, context: VariableContext) -> Variable:
    variable = variable[len(Variable.VARIABLE_PREFIX) :]
    if DeployerAccount.is_deployer(variable):
        return DeployerAccount()
    elif Constant.is_constant(variable):
        return Constant(variable, context)
    else:
        return ComponentAddress(variable, context)


def _process_raw_value(value: Any, variable_context: VariableContext) -> Any:
    if isinstance(value, list):
        return tuple(_process_raw_value(v, variable_context) for v in value)

    if Variable.is_variable(value):
        value = _variable_from_value(value, variable_context)

    return value


def _process_raw_values(values: typing.Dict, variable_context: VariableContext) -> OrderedDict:
    processed_parameters = OrderedDict()
    for name, value in values.items():
        processed_parameters[name] = _process_raw_value(value, variable_context)

    return processed_parameters


def _resolve_param(value: Any, context: ResolutionContext) -> Any:
    """Resolves a single parameter value or a list of parameter values."""
    if isinstance(value, (list, tuple)):
        return [_resolve_param(v, context) for v in value]

    if isinstance(value, Variable):
        return value.resolve(context)

    return value  # literally a value


def _resolve_params(parameters: typing.Mapping, context: ResolutionContext) -> OrderedDict:
    resolved_parameters = OrderedDict()
    for name, value in parameters.items():
        resolved_parameters[name] = _resolve_param(value, context)

    return resolved_parameters


def referenced_components(value: Any) -> List[str]:
    """Component ids referenced by a (possibly nested) template value, in order of appearance."""
    if isinstance(value, typing.Mapping):
        value = list(value.values())
    if isinstance(value, (list, tuple)):
        references = list()
        for item in value:
            for reference in referenced_components(item):
                if reference not in references:
                    references.append(reference)
        return references
    if isinstance(value, ComponentAddress):
        return [value.component_id]
    return list()


def _is_unresolved(value: Any) -> bool:
    if isinstance(value, (list, tuple)):
        return any(_is_unresolved(v) for v in value)
    return isinstance(value, Variable) or Variable.is_variable(value)


def check_resolved(component_id: str, resolved_args: typing.Mapping) -> None:
    """Fails fast if any resolved argument still carries a placeholder."""
    for name, value in resolved_args.items():
        if _is_unresolved(value):
            raise UnresolvedArgument(component=component_id, name=name, value=value)


def check_resolved_list(component_id: str, values: Iterable[Any]) -> None:
    check_resolved(component_id, OrderedDict((str(i), v) for i, v in enumerate(values)))
