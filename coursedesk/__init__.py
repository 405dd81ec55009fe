"""
Core package for the Course Desk aggregation engine.

Kept free of transport and CLI imports so the models and error types can be
used by any caller that already holds backend payloads.
"""

from importlib import metadata


def get_version() -> str:
    """Return the installed project version."""
    try:
        return metadata.version("coursedesk")
    except metadata.PackageNotFoundError:
        return "0.0.0"


__all__ = ["get_version"]
