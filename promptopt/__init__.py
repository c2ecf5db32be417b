"""Usage quota enforcement and multi-provider dispatch for a prompt optimization service."""

__version__ = "1.0.0"
