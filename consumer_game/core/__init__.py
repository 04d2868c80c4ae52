"""Core gameplay primitives (queue naming, events, and pure state transitions).

Kept free of FastAPI, asyncio and broker concerns so the rules can be exercised
directly from tests.
"""
