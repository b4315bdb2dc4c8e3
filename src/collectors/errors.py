"""
Exceptions raised while building and polling collectors.

Configuration-class errors are terminal for a declaration until the
declaration changes. Backend errors are local to one poll.
"""


class CollectorError(Exception):
    """Base class for collector framework errors."""


class ConfigurationError(CollectorError):
    """A metric declaration carries missing or invalid configuration."""

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class UnsupportedMetricError(ConfigurationError):
    """A plugin was handed a declaration it does not own."""


class PluginNotFoundError(ConfigurationError):
    """No registered plugin accepted the declaration."""

    def __init__(self, message: str, declaration: object = None) -> None:
        super().__init__(message)
        self.declaration = declaration


class MalformedResponseError(CollectorError):
    """A backend answered with something that cannot be mapped to metrics."""
