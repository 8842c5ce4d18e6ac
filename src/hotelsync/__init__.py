"""hotelsync - Synchronization orchestration for hotel distribution partners."""

__version__ = "0.1.0"
