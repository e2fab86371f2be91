"""Claude Blocker API - session activity, token and cost tracking service."""

__version__ = "0.1.0"
