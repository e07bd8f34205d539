"""Agent Relay - durable chat-to-agent message dispatcher."""

__version__ = "0.4.0"
