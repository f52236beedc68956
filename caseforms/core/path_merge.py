"""
Path Merge - Structural, path-scoped merge primitive

Responsibilities:
- Address nodes in a nested document with dotted paths
- Shallow-merge a partial update into exactly one node
- Rebuild only the spine from the root to that node

Design principles:
- Pure functions (inputs are never mutated)
- Sibling sub-trees are shared by reference, not copied
- Merge depth is exactly one level at the addressed node
- Unknown paths raise; lookups used for derivation never raise

Example:
    doc = {'part_one': {...}, 'part_two': {'medical_history': {...}}}
    new_doc = merge_at_path(doc, 'part_two.medical_history',
                            {'relevant_medical_history': 'asthma'})
    # new_doc['part_one'] is doc['part_one']  (same object)
    # new_doc['part_two'] is a new dict, only medical_history differs
"""

from typing import Any, Dict, List, Sequence, Union

from caseforms.errors import UnknownSectionPath

Path = Union[str, Sequence[str]]

_MISSING = object()


def split_path(path: Path) -> List[str]:
    """
    Normalise a dotted path (or a sequence of segments) to a list.

    Raises:
        UnknownSectionPath: If the path is empty or has empty segments
    """
    if isinstance(path, (list, tuple)):
        parts = [str(p) for p in path]
    elif isinstance(path, str):
        parts = path.strip().split('.') if path.strip() else []
    else:
        raise UnknownSectionPath(repr(path), "is not a dotted path")

    if not parts:
        raise UnknownSectionPath(str(path), "is empty")
    if any(not p for p in parts):
        raise UnknownSectionPath(join_path(parts), "has an empty segment")
    return parts


def join_path(parts: Sequence[str]) -> str:
    return '.'.join(parts)


def deep_copy(obj: Any) -> Any:
    """
    Create deep copy of nested dict/list structure.

    Args:
        obj: Object to copy (dict, list, or primitive)

    Returns:
        Deep copy of object
    """
    if isinstance(obj, dict):
        return {k: deep_copy(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [deep_copy(item) for item in obj]
    else:
        return obj


def get_at_path(document: Dict[str, Any], path: Path) -> Any:
    """
    Return the node at path (no copy).

    Raises:
        UnknownSectionPath: If any segment is missing or an intermediate
            node is not an object
    """
    parts = split_path(path)
    node: Any = document
    for i, part in enumerate(parts):
        if not isinstance(node, dict):
            raise UnknownSectionPath(join_path(parts), f"passes through non-object '{join_path(parts[:i])}'")
        if part not in node:
            raise UnknownSectionPath(join_path(parts))
        node = node[part]
    return node


def lookup(document: Any, path: Path, default: Any = None) -> Any:
    """
    Total variant of get_at_path: returns default instead of raising.

    Used by status derivation, which must treat missing fields as
    "not satisfied" rather than as errors.
    """
    try:
        parts = split_path(path)
    except UnknownSectionPath:
        return default

    node = document
    for part in parts:
        if not isinstance(node, dict):
            return default
        node = node.get(part, _MISSING)
        if node is _MISSING:
            return default
    return node


def replace_at_path(document: Dict[str, Any], path: Path, value: Any) -> Dict[str, Any]:
    """
    Return a new document with the node at path replaced by value.

    Only the dicts along the path are copied (shallow); everything else
    is shared with the input document.

    Raises:
        UnknownSectionPath: If the path does not exist
    """
    parts = split_path(path)
    return _replace(document, parts, 0, value)


def _replace(node: Any, parts: List[str], depth: int, value: Any) -> Dict[str, Any]:
    if not isinstance(node, dict):
        raise UnknownSectionPath(join_path(parts), f"passes through non-object '{join_path(parts[:depth])}'")

    key = parts[depth]
    if key not in node:
        raise UnknownSectionPath(join_path(parts))

    copied = dict(node)
    if depth == len(parts) - 1:
        copied[key] = value
    else:
        copied[key] = _replace(node[key], parts, depth + 1, value)
    return copied


def merge_at_path(document: Dict[str, Any], path: Path, partial: Dict[str, Any]) -> Dict[str, Any]:
    """
    Shallow-merge partial into the object at path.

    Keys present in partial overwrite; keys absent are left untouched.
    Values from partial are deep-copied so later caller mutation cannot
    leak into the document.

    Args:
        document: Root document (not mutated)
        path: Dotted path to an object node
        partial: Keys to change at that node

    Returns:
        dict: New root document

    Raises:
        UnknownSectionPath: If path is missing or not an object
    """
    parts = split_path(path)
    node = get_at_path(document, parts)
    if not isinstance(node, dict):
        raise UnknownSectionPath(join_path(parts), "is not an object")

    merged = dict(node)
    for key, value in partial.items():
        merged[key] = deep_copy(value)
    return replace_at_path(document, parts, merged)
