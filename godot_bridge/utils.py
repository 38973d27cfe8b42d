"""
Utility functions for the Godot bridge.
"""


def safe_serialize(obj):
    """Safely convert an object into a JSON-compatible structure."""
    if isinstance(obj, dict):
        return {str(k): safe_serialize(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple, set, frozenset)):
        return [safe_serialize(v) for v in obj]
    elif isinstance(obj, (str, int, float, bool, type(None))):
        return obj
    elif isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    elif hasattr(obj, "value") and isinstance(getattr(obj, "value"), (str, int)):
        # Enums
        return obj.value
    else:
        return str(obj)


def truncate_output(output, max_length: int = 1000) -> str:
    """Truncate large payloads for log lines.

    Raw bytes from a backend are decoded leniently so that a malformed
    frame still shows up readable in the log.
    """
    if output is None:
        return ""

    if isinstance(output, (bytes, bytearray)):
        output_str = bytes(output).decode("utf-8", errors="replace")
    else:
        output_str = str(output)

    if len(output_str) > max_length:
        return output_str[:max_length] + f"... (truncated, {len(output_str)} total chars)"
    return output_str
