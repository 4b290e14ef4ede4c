from typing import Iterable, Optional


class DeploymentError(Exception):
    """Base class for every failure raised while orchestrating a deployment."""

    @property
    def kind(self) -> str:
        return type(self).__name__


#
# Configuration - detected before any side effect
#


class ConfigurationError(DeploymentError):
    """Raised when the deployment configuration is invalid."""


class UnknownDependency(ConfigurationError):
    def __init__(self, component: str, dependency: str):
        self.component = component
        self.dependency = dependency
        super().__init__(f"{component} depends on unknown component '{dependency}'")


class CyclicDependency(ConfigurationError):
    def __init__(self, components: Iterable[str]):
        self.components = tuple(components)
        super().__init__(f"Dependency cycle between {', '.join(self.components)}")


#
# Backend
#


class SubmissionError(DeploymentError):
    """Raised when the backend refuses a transaction outright."""


class SubmissionRejected(SubmissionError):
    pass


class ConfirmationTimeoutError(DeploymentError):
    """Raised when a submitted transaction is not confirmed within the timeout."""

    def __init__(self, reference: str, timeout: float, record=None):
        self.reference = reference
        self.timeout = timeout
        self.record = record
        super().__init__(
            f"Transaction {reference} not confirmed after {timeout}s; the next run waits on it "
            f"again. If it was dropped, append a 'failed' entry after its pending entry in the "
            f"registry file to resubmit."
        )


class ExecutionError(DeploymentError):
    """Raised when the backend accepted a transaction but its execution reverted."""

    def __init__(self, reason: str, reference: Optional[str] = None, record=None):
        self.reason = reason
        self.reference = reference
        self.record = record
        super().__init__(reason)


class ExecutionReverted(ExecutionError):
    pass


class VerificationError(DeploymentError):
    """Raised when live on-chain state does not match the intended configuration."""


class LinkVerificationFailed(VerificationError):
    pass


#
# Orchestration defects - these indicate an ordering bug, not a user error
#


class OrchestrationDefect(DeploymentError):
    pass


class UnresolvedArgument(OrchestrationDefect):
    def __init__(self, component: str, name: str, value):
        self.component = component
        self.name = name
        super().__init__(f"Initializer argument '{name}' of {component} is unresolved: {value}")


class DependencyNotReady(OrchestrationDefect):
    def __init__(self, component: str, dependency: str):
        self.component = component
        self.dependency = dependency
        super().__init__(f"{component} requires {dependency}, which has no deployed record")


class RegistryLocked(DeploymentError):
    """Raised when another run holds the registry lock for a network."""
