"""Exception hierarchy for extperf."""


class ExtperfError(Exception):
    """Base class for all extperf errors."""


class SamplingError(ExtperfError):
    """The OS listing or sampling primitive failed for a whole batch."""


class PersistenceError(ExtperfError):
    """Loading or saving the history map failed."""


class ConfigurationError(ExtperfError):
    """A configuration file could not be read or parsed."""
