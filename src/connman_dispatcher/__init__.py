# connman-dispatcher - run hook scripts on ConnMan connectivity changes.
# This package only exposes a version string for "pip show".

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("connman-dispatcher")
except PackageNotFoundError:        # running from a checkout
    __version__ = "0.0.0+dev"
