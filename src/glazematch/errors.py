"""
Error taxonomy for the glaze color-matching engine.

All of these are caller or input errors. They are raised synchronously and
never retried; a failed call leaves any loaded model untouched.
"""


class GlazeMatchError(Exception):
    """Base class for every error raised by glazematch."""


class NotLoadedError(GlazeMatchError, RuntimeError):
    """A match or prediction was requested before any model was loaded."""


class EmptyDatasetError(GlazeMatchError, ValueError):
    """The loaded model contains no test points to search."""


class InvalidColorError(GlazeMatchError, ValueError):
    """A hex string or RGB triple could not be interpreted as a color."""


class InvalidRecipeError(GlazeMatchError, ValueError):
    """A recipe channel is negative, above the maximum, or not finite."""


class RecipeArityError(InvalidRecipeError):
    """A recipe has a different number of channels than the model."""


class DatasetFormatError(GlazeMatchError, ValueError):
    """A dataset file is missing the columns needed to build test points."""
