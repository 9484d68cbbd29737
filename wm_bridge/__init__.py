"""
Window-Manager Bridge

Mirrors yabai spaces and windows into immutable snapshots, sends focus and
space commands back through a serialized queue, and resolves application
icons with a deduplicated background search.
"""

__version__ = "1.0.0"
__author__ = "NixOS Configuration Team"
