"""OmniDrop: authenticated local endpoint for task creation and file drops."""

__version__ = "1.0.0"
