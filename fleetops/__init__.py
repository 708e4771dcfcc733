"""Fleet and personnel assignment backend."""

__version__ = "0.1.0"
