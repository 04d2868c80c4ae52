"""Player command processing.

Centralizes validation + dispatch so WebSocket and HTTP commands flow through the
same pipeline and show up consistently in server logs.
"""
