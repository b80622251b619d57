"""
Response Comparator for Authopsy.

Structural JSON utilities used to compare role responses: key-path
extraction, array-length extraction, key-set comparison and size ratio.

Arrays are sampled through their first element only. Heterogeneous
arrays are therefore under-sampled, which keeps traversal cost bounded.
"""

from typing import Any, Dict, Iterable, List, Optional, Set


def _join(prefix: str, key: str) -> str:
    return f"{prefix}.{key}" if prefix else key


def _walk_keys(value: Any, prefix: str, keys: Set[str]) -> None:
    if isinstance(value, dict):
        for key, child in value.items():
            path = _join(prefix, str(key))
            keys.add(path)
            _walk_keys(child, path, keys)
    elif isinstance(value, list):
        # A top-level array has no name to hang "[]" on
        if prefix:
            array_path = f"{prefix}[]"
            keys.add(array_path)
            if value:
                _walk_keys(value[0], array_path, keys)


def _walk_arrays(value: Any, prefix: str, lengths: Dict[str, int]) -> None:
    if isinstance(value, dict):
        for key, child in value.items():
            _walk_arrays(child, _join(prefix, str(key)), lengths)
    elif isinstance(value, list):
        if prefix:
            lengths[prefix] = len(value)
        if value:
            _walk_arrays(value[0], f"{prefix}[]", lengths)


def extract_key_paths(value: Any) -> Set[str]:
    """Collect dotted/bracketed key paths of a JSON value, unfiltered."""
    keys: Set[str] = set()
    _walk_keys(value, "", keys)
    return keys


def json_depth(value: Any) -> int:
    """Nesting depth of objects and arrays, walked without recursion. Scalars are 0."""
    depth = 0
    stack = [(value, 1)]
    while stack:
        node, level = stack.pop()
        if isinstance(node, dict):
            children = node.values()
        elif isinstance(node, list):
            children = node
        else:
            continue
        depth = max(depth, level)
        stack.extend((child, level + 1) for child in children)
    return depth


def count_json_keys(value: Any) -> int:
    """Count every object key recursively, descending into first array elements."""
    if isinstance(value, dict):
        return len(value) + sum(count_json_keys(child) for child in value.values())
    if isinstance(value, list):
        return count_json_keys(value[0]) if value else 0
    return 0


class JsonDiffer:
    """
    Compares the shape of JSON responses.

    Paths containing any of the configured ignore patterns (for example
    volatile fields such as "timestamp") are dropped from key sets.
    """

    def __init__(self, ignore_patterns: Optional[Iterable[str]] = None):
        self.ignore_patterns: List[str] = [p for p in (ignore_patterns or []) if p]

    def extract_keys(self, value: Any) -> Set[str]:
        return self._filter_ignored(extract_key_paths(value))

    def extract_array_lengths(self, value: Any) -> Dict[str, int]:
        lengths: Dict[str, int] = {}
        _walk_arrays(value, "", lengths)
        return lengths

    @staticmethod
    def keys_match(keys1: Set[str], keys2: Set[str]) -> bool:
        return keys1 == keys2

    @staticmethod
    def extra_keys(base: Set[str], compare: Set[str]) -> Set[str]:
        """Keys present in `compare` but missing from `base`."""
        return compare - base

    @staticmethod
    def length_diff_ratio(len1: int, len2: int) -> float:
        """Relative size difference in [0, 1]."""
        if len1 == 0 and len2 == 0:
            return 0.0
        return abs(len1 - len2) / max(len1, len2)

    def _filter_ignored(self, keys: Set[str]) -> Set[str]:
        if not self.ignore_patterns:
            return keys
        return {
            key for key in keys
            if not any(p in key or key.endswith(p) for p in self.ignore_patterns)
        }
