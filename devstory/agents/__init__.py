"""Code-generation agent integrations."""

from devstory.agents.claude import AgentResult, AgentSettings, ClaudeCodeClient

__all__ = ["AgentResult", "AgentSettings", "ClaudeCodeClient"]
