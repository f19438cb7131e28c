"""kairo -- encrypted provider credentials and secure CLI harness handoff."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kairo")
except PackageNotFoundError:
    # Running from a source tree that was never installed.
    __version__ = "0.0.0"
