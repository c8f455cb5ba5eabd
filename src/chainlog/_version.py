"""Version information for chainlog."""

from __future__ import annotations

__version__ = "0.3.0"
VERSION = __version__
