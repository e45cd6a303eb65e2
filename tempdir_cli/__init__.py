"""Shell helper that hands out temporary working directories.

The command surface is implemented with Typer and Rich for help and error
ergonomics, while stdout stays reserved for the single path line the wrapping
shell function `cd`s into.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
