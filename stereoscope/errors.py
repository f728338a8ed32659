"""
Error and Warning Types

ConfigurationError is the only fatal condition: it is raised while an engine
or band set is being constructed, before any state exists.

The warning categories are issued through the standard warnings module and
never interrupt analysis. Callers that want them silenced (or escalated) use
warnings.simplefilter with the category.
"""


class ConfigurationError(ValueError):
    """Invalid band, frequency, loudness or history parameters."""


class DegenerateInputWarning(UserWarning):
    """A silent (all-zero) or non-finite block was analyzed; floor values were reported."""


class InsufficientHistoryWarning(UserWarning):
    """Trend or relationship analysis was requested before enough history existed."""
