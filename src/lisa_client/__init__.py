"""Client for the AgentLISA security-scanning service."""

__version__ = "0.1.4"
