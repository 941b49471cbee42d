"""agentorch: run AI coding-agent CLIs against folders, one task per folder at a time."""

from agentorch.config import VERSION as __version__

__all__ = ["__version__"]
