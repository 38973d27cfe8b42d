"""
Godot Bridge - routes AI-agent tool calls to the Godot engine.
"""

__version__ = "0.1.0"
