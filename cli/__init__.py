"""Job Store Janitor CLI"""

from janitor import __version__

__all__ = ["__version__"]
