"""Key remapping — rewrite byte sequences in the keystroke stream.

Rules are matched longest-first at every position of the input; unmatched
bytes pass through unchanged.
"""

from keyhook.remap.keymap import KeyMap, KeyRule, transform

__all__ = [
    "KeyMap",
    "KeyRule",
    "transform",
]
