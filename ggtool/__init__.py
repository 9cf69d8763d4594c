"""Select, download, cache and run developer tools: selectors, versions, config and cache."""

__version__ = "0.1.0"