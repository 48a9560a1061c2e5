"""
Routing error types.

Only NoAgentAvailableError ever reaches a caller of route_request(); every
other scorer failure is handled inside the component that owns it.
"""

from typing import Iterable, List, Optional


class RoutingError(Exception):
    """Base class for routing engine errors."""
    pass


class NoAgentAvailableError(RoutingError):
    """Raised when a request cannot be routed to any agent."""

    EMPTY_POOL = "empty_pool"
    NO_CAPABILITY_MATCH = "no_capability_match"
    POOL_TIMEOUT = "pool_timeout"

    def __init__(self, reason: str, required_capabilities: Optional[Iterable[str]] = None,
                 message: Optional[str] = None):
        self.reason = reason
        self.required_capabilities = sorted(required_capabilities or [])
        if message is None:
            if reason == self.NO_CAPABILITY_MATCH:
                message = ("No agents support the required capabilities: "
                           f"{', '.join(self.required_capabilities)}")
            elif reason == self.POOL_TIMEOUT:
                message = "Agent pool did not respond before the routing deadline"
            else:
                message = "No available agents found"
        super().__init__(message)


class ExperimentConfigError(RoutingError, ValueError):
    """Raised when an A/B test definition fails validation."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors or [message])
        super().__init__(message)


class TestNotFoundError(RoutingError, KeyError):
    """Raised when an A/B test id is unknown."""

    __test__ = False  # not a pytest test class

    def __init__(self, test_id: str):
        self.test_id = test_id
        super().__init__(f"Test not found: {test_id}")

    def __str__(self) -> str:
        return self.args[0]
