"""provx error hierarchy.

Build failures are never wrapped in these: the exception raised by a
provider's ``build`` is the one published on its error cell.
"""


class ProviderError(Exception):
    """Base error for provx's own failures."""


class ProviderKeyError(ProviderError, TypeError):
    """Provider arguments cannot be turned into a registry key."""


class DependencyCycleError(ProviderError):
    """A provider depends, directly or transitively, on itself."""

    def __init__(self, chain: list[str]) -> None:
        self.chain = chain
        super().__init__("dependency cycle: " + " -> ".join(chain))
