"""taskforge: task-graph mutation engine with AI-assisted planning."""

from taskforge.config import VERSION as __version__

__all__ = ["__version__"]
