"""
Core backend primitives for the Vox chat room.

Modules under ``vox_core`` provide the provider clients the room uses to
reach a completion API.
"""

__all__ = ["llm", "provider_router"]
