"""Exception types raised by the solver."""


class Poisson2DError(Exception):
    """Base class for all solver errors."""


class ConfigurationError(Poisson2DError, ValueError):
    """Invalid run configuration. Fatal for the whole run."""


class TopologyError(ConfigurationError):
    """Requested process grid does not factor the worker count."""


class ProblemFileError(ConfigurationError):
    """Problem file is missing or malformed."""


class FabricAbortedError(Poisson2DError, RuntimeError):
    """Another worker aborted the run while this one was communicating."""
