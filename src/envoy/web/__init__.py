"""Local JSON API for the Envoy agent.

Provides a FastAPI-based interface for:
- Sending messages and reading conversations
- Approving or rejecting pending actions
- Inspecting approval patterns
- Answering tier escalation prompts
"""

from envoy.web.app import create_app

__all__ = ["create_app"]
