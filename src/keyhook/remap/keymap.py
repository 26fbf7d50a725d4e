"""Key map and the streaming input transform."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from keyhook.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyRule:
    """A single rewrite: ``pattern`` in the input becomes ``output``.

    An empty ``output`` drops the matched bytes.
    """

    pattern: bytes
    output: bytes = b""

    def __post_init__(self) -> None:
        if not self.pattern:
            raise ConfigurationError("key rule pattern cannot be empty")


class _Node:
    __slots__ = ("children", "output")

    def __init__(self) -> None:
        self.children: dict[int, _Node] = {}
        self.output: bytes | None = None


class KeyMap:
    """Immutable rule set, stored as a byte trie.

    Matching at a position walks the trie as far as the input allows and
    keeps the deepest node that terminates a pattern, so the longest
    pattern always wins regardless of registration order. When the same
    pattern is registered twice the first rule is kept.
    """

    def __init__(self, rules: Iterable[KeyRule] = ()) -> None:
        self._root = _Node()
        kept: list[KeyRule] = []
        for rule in rules:
            node = self._root
            for byte in rule.pattern:
                node = node.children.setdefault(byte, _Node())
            if node.output is not None:
                logger.warning(
                    "Duplicate key rule for %s ignored", rule.pattern.hex()
                )
                continue
            node.output = rule.output
            kept.append(rule)
        self._rules = tuple(kept)

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[bytes, bytes]]) -> KeyMap:
        return cls(KeyRule(pattern, output) for pattern, output in pairs)

    @property
    def rules(self) -> tuple[KeyRule, ...]:
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def __bool__(self) -> bool:
        return bool(self._rules)

    def __repr__(self) -> str:
        pairs = ", ".join(f"{r.pattern.hex()}:{r.output.hex()}" for r in self._rules)
        return f"KeyMap([{pairs}])"

    def match(self, data: bytes, pos: int = 0) -> tuple[int, bytes] | None:
        """Return ``(length, output)`` of the longest rule matching at ``pos``."""
        node = self._root
        best: tuple[int, bytes] | None = None
        i = pos
        end = len(data)
        while i < end:
            node = node.children.get(data[i])  # type: ignore[assignment]
            if node is None:
                break
            i += 1
            if node.output is not None:
                best = (i - pos, node.output)
        return best

    def transform(self, data: bytes) -> bytes:
        return transform(data, self)


def transform(data: bytes, keymap: KeyMap) -> bytes:
    """Rewrite ``data`` according to ``keymap``.

    Scans left to right. At each position the longest matching pattern is
    replaced by its output and the scan skips past it; otherwise the byte
    is copied unchanged. Holds no state between calls, so a sequence split
    across two reads is not recognised.
    """
    if not keymap or not data:
        return data

    result = bytearray()
    i = 0
    end = len(data)
    while i < end:
        found = keymap.match(data, i)
        if found is None:
            result.append(data[i])
            i += 1
            continue
        length, output = found
        result += output
        i += length
    return bytes(result)
