"""nodeswarm: orchestrate LLM agents through dependency-aware workflows."""

__version__ = "0.1.0"
