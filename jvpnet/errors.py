"""
Exception types raised by elements and their configuration.
"""


class ContractViolationError(NotImplementedError):
    """An element was asked for a primitive it does not provide."""

    def __init__(self, element, method: str):
        name = element if isinstance(element, str) else type(element).__name__
        super().__init__(f"{name} must provide method {method}")
        self.method = method


class ConfigurationError(ValueError):
    """Invalid value assigned to an element or solver configuration."""


class DimensionMismatchError(ValueError):
    """Parameters or features do not match the element's declared sizes."""
