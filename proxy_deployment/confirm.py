import sys
from typing import Any, List, Mapping, Optional, Sequence

from proxy_deployment.constants import ZERO_ADDRESS
from proxy_deployment.utils import same_value


def _abort() -> None:
    print("Aborting deployment!")
    sys.exit(-1)


def _ask(question: str) -> None:
    answer = input(f"{question} Y/N? ")
    if answer.lower().strip() == "n":
        _abort()


def _zero_address_bindings(values: Mapping[str, Any]) -> List[str]:
    """Names of the values that resolve to the zero address, including list members."""
    bindings = list()
    for name, value in values.items():
        members = value if isinstance(value, (list, tuple)) else [value]
        if any(same_value(member, ZERO_ADDRESS) for member in members):
            bindings.append(name)
    return bindings


def confirm_initializer(
    component: str,
    contract_type: str,
    initializer: str,
    resolved_args: Mapping[str, Any],
    deployer: Optional[str] = None,
) -> None:
    """Shows the resolved initializer call of a component proxy and asks to deploy it."""
    if not resolved_args:
        print(f"\n(i) {component} ({contract_type}) is deployed without {initializer} arguments")
    else:
        print(f"\n{component}: {contract_type}.{initializer} arguments")
        for name, value in resolved_args.items():
            note = " (deployer)" if deployer and same_value(value, deployer) else ""
            print(f"\t{name}={value}{note}")
    _ask(f"Deploy {component}")

    for name in _zero_address_bindings(resolved_args):
        _ask(f"Zero address bound to {component}.{initializer}({name}=...); continue")


def confirm_link(source: str, method: str, target: str, args: Sequence[Any]) -> None:
    """Asks to send the call that registers ``target`` on ``source``."""
    _ask(f"Register {target} on {source} with {method}")
    positional = {f"argument {index}": value for index, value in enumerate(args)}
    for name in _zero_address_bindings(positional):
        _ask(f"Zero address passed as {name} of {source}.{method} for {target}; continue")
