"""evalgate utilities."""

from evalgate.utils.logging import configure_logging

__all__ = ["configure_logging"]
