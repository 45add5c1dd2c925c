"""Rule controller: reconciles Rule resources into a function backend."""

__version__ = "0.1.0"
