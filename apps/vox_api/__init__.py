"""
HTTP and WebSocket adapter for the Vox chat room.

The room core in ``vox_room`` knows nothing about the transport; this package
wires it to FastAPI.
"""

from .app import create_app

__all__ = ["create_app"]
