"""Release version of the package."""

_VERSION = "3.23.0"


def version() -> str:
    """Return the release version string."""
    return _VERSION