"""reconpilot: task orchestration core for AI-assisted reconnaissance."""

__version__ = "0.4.0"
