"""
shipyard - Multi-workspace build orchestrator and unified-origin server.
"""

__version__ = "0.1.0"
