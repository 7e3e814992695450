"""Exception types raised by the exporter."""


class HostMetricsError(Exception):
    """Base class for all exporter errors."""


class ConfigError(HostMetricsError):
    """Configuration failed to load or validate."""


class RegistrationError(HostMetricsError):
    """A metric series could not be registered."""


class DuplicateSeriesError(RegistrationError):
    """A series name was registered twice with a different shape."""


class LabelArityError(RegistrationError):
    """Label values do not match the label keys of a series."""


class TransientSampleError(HostMetricsError):
    """A single metric category could not be read for one tick."""

    def __init__(self, category: str, message: str):
        super().__init__(f"{category}: {message}")
        self.category = category


class ListenerStartError(HostMetricsError):
    """The HTTP listener failed to bind or start."""


class ShutdownDrainError(HostMetricsError):
    """The HTTP listener failed to stop cleanly."""
