"""KSU CSOS rules and roles service."""

__version__ = "1.0.0"
