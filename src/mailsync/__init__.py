"""mailsync - multi-account mail synchronization engine."""

__version__ = "0.1.0"
