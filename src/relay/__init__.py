"""Relay server for shared voice/chat sessions with an AI assistant.

This module provides the session registry, membership tracking, message
fan-out and the WebSocket/HTTP surfaces participants connect through.
"""

__version__ = "0.1.0"
