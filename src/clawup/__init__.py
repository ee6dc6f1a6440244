"""clawup: identity resolution and manifest reconciliation for agent fleets."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("clawup")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
