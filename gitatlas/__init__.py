"""gitatlas: track the state of git repositories across machines."""

__version__ = "0.1.0"
