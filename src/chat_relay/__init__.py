"""
Chat Relay: guardrail-aware chat front end for Workers AI.

Serves a small chat UI and a single streaming chat API. Underneath, it:
1. Sanitizes the client's history (one server system prompt, no blocked turns)
2. Forwards it to a Workers AI model, optionally through an AI Gateway
3. Relays the token stream back as Server-Sent Events, or maps guardrail
   rejections to a fixed message the client can act on
"""

__version__ = "0.1.0"
