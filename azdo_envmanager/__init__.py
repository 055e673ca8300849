"""Azure DevOps variable library and pipeline manager."""
__version__ = "0.1.0"
