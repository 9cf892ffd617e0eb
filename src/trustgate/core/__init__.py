"""Core configuration, settings access, logging setup and error taxonomy."""
