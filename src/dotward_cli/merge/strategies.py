"""Merge strategies for managed files.

Every function here is pure: it takes the parsed existing document and a
fragment, and returns a new document without mutating its input. When the
existing document no longer has the shape a fragment expects, the
function raises ``MergeConflict`` and the caller leaves the file alone.

Each strategy has an inverse used by ``reset`` to take the framework's
contribution back out again.
"""

from __future__ import annotations

import copy
from typing import Any

from dotward_cli.errors import MergeConflict
from dotward_cli.schema.models import (
    ArrayUnionByKey,
    DeepMergeMissingKeys,
    KeyExtractor,
    MergeFragment,
    ScriptAppend,
    TextPatch,
    TextPatchOperation,
)

_DOCUMENT = "<document>"


# ============================================================================
# Dotted target helpers
# ============================================================================


def _segments(target: str) -> list[str]:
    return [part for part in target.split(".") if part]


def _walk(document: Any, segments: list[str], source: str, create: bool) -> dict | None:
    """Return the mapping that holds the last segment of a dotted target.

    Missing intermediate mappings are created when ``create`` is set;
    otherwise ``None`` is returned for a missing branch.
    """
    node = document
    trail: list[str] = []
    for name in segments[:-1]:
        if not isinstance(node, dict):
            raise MergeConflict(source, f"expected a mapping at '{'.'.join(trail) or '<root>'}'")
        trail.append(name)
        if name not in node:
            if not create:
                return None
            node[name] = {}
        node = node[name]
    if not isinstance(node, dict):
        raise MergeConflict(source, f"expected a mapping at '{'.'.join(trail) or '<root>'}'")
    return node


def _prune_empty(document: Any, segments: list[str]) -> None:
    """Remove the container at *segments* and any parents left empty."""
    for depth in range(len(segments), 0, -1):
        parent = _walk(document, segments[:depth], _DOCUMENT, create=False)
        if parent is None:
            return
        name = segments[depth - 1]
        if name in parent and parent[name] in ({}, []):
            del parent[name]
        else:
            return


# ============================================================================
# DeepMergeMissingKeys
# ============================================================================


def deep_merge_missing_keys(existing: Any, payload: dict, source: str = _DOCUMENT) -> Any:
    """Add keys from *payload* missing at any depth; existing values win.

    Lists are leaves: an existing list is never extended by this strategy.
    """
    if not isinstance(existing, dict):
        raise MergeConflict(source, "document root is not a mapping")
    merged = copy.deepcopy(existing)
    _fill_missing(merged, payload, [], source)
    return merged


def _fill_missing(target: dict, payload: dict, trail: list[str], source: str) -> None:
    for key, value in payload.items():
        if key not in target:
            target[key] = copy.deepcopy(value)
        elif isinstance(value, dict):
            if not isinstance(target[key], dict):
                location = ".".join(trail + [str(key)])
                raise MergeConflict(source, f"expected a mapping at '{location}'")
            _fill_missing(target[key], value, trail + [str(key)], source)


def remove_deep_merge(existing: Any, payload: dict, source: str = _DOCUMENT) -> Any:
    """Remove keys whose value still equals the fragment's, pruning emptied mappings."""
    if not isinstance(existing, dict):
        raise MergeConflict(source, "document root is not a mapping")
    result = copy.deepcopy(existing)
    _strip_matching(result, payload)
    return result


def _strip_matching(target: dict, payload: dict) -> None:
    for key, value in payload.items():
        if key not in target:
            continue
        current = target[key]
        if isinstance(value, dict) and isinstance(current, dict):
            _strip_matching(current, value)
            if not current:
                del target[key]
        elif current == value:
            del target[key]


# ============================================================================
# ArrayUnionByKey
# ============================================================================


def _entry_identity(entry: Any, key: KeyExtractor) -> frozenset[str] | None:
    """Extracted keys of *entry*, or None when it has no usable key."""
    extracted = key.extract(entry)
    return frozenset(extracted) or None


def _contains(entries: list, candidate: Any, key: KeyExtractor) -> bool:
    identity = _entry_identity(candidate, key)
    for entry in entries:
        if identity is None:
            if entry == candidate:
                return True
        elif identity & (_entry_identity(entry, key) or frozenset()):
            return True
    return False


def array_union_by_key(
    existing: Any, strategy: ArrayUnionByKey, payload: list, source: str = _DOCUMENT
) -> Any:
    """Append payload entries whose keys overlap no entry already in the target array.

    Existing entries are never reordered or removed. Entries without a
    usable key are compared by value.
    """
    if not isinstance(existing, dict):
        raise MergeConflict(source, "document root is not a mapping")
    merged = copy.deepcopy(existing)
    segments = _segments(strategy.target)
    parent = _walk(merged, segments, source, create=True)
    name = segments[-1]
    if name not in parent:
        parent[name] = []
    array = parent[name]
    if not isinstance(array, list):
        raise MergeConflict(source, f"expected a list at '{strategy.target}'")
    for entry in payload:
        if not _contains(array, entry, strategy.key):
            array.append(copy.deepcopy(entry))
    return merged


def remove_array_union(
    existing: Any, strategy: ArrayUnionByKey, payload: list, source: str = _DOCUMENT
) -> Any:
    """Remove entries whose keys overlap any payload entry's keys."""
    if not isinstance(existing, dict):
        raise MergeConflict(source, "document root is not a mapping")
    result = copy.deepcopy(existing)
    segments = _segments(strategy.target)
    parent = _walk(result, segments, source, create=False)
    name = segments[-1]
    if parent is None or name not in parent:
        return result
    array = parent[name]
    if not isinstance(array, list):
        raise MergeConflict(source, f"expected a list at '{strategy.target}'")
    kept = [entry for entry in array if not _contains(payload, entry, strategy.key)]
    array[:] = kept
    _prune_empty(result, segments)
    return result


# ============================================================================
# ScriptAppend
# ============================================================================


def script_append(
    existing: Any, strategy: ScriptAppend, payload: dict[str, str], source: str = _DOCUMENT
) -> Any:
    """Add keys to the target map only when absent."""
    if not isinstance(existing, dict):
        raise MergeConflict(source, "document root is not a mapping")
    merged = copy.deepcopy(existing)
    segments = _segments(strategy.target)
    parent = _walk(merged, segments, source, create=True)
    name = segments[-1]
    if name not in parent:
        parent[name] = {}
    scripts = parent[name]
    if not isinstance(scripts, dict):
        raise MergeConflict(source, f"expected a mapping at '{strategy.target}'")
    for key, value in payload.items():
        if key not in scripts:
            scripts[key] = value
    return merged


def remove_script_append(
    existing: Any, strategy: ScriptAppend, payload: dict[str, str], source: str = _DOCUMENT
) -> Any:
    """Remove keys whose value is still exactly what the fragment added."""
    if not isinstance(existing, dict):
        raise MergeConflict(source, "document root is not a mapping")
    result = copy.deepcopy(existing)
    segments = _segments(strategy.target)
    parent = _walk(result, segments, source, create=False)
    name = segments[-1]
    if parent is None or name not in parent:
        return result
    scripts = parent[name]
    if not isinstance(scripts, dict):
        raise MergeConflict(source, f"expected a mapping at '{strategy.target}'")
    for key, value in payload.items():
        if scripts.get(key) == value:
            del scripts[key]
    _prune_empty(result, segments)
    return result


# ============================================================================
# TextPatch
# ============================================================================


def _block(payload: str) -> str:
    return payload if payload.endswith("\n") else payload + "\n"


def text_patch(existing: Any, strategy: TextPatch, payload: str, source: str = _DOCUMENT) -> str:
    """Prepend or append *payload* unless ``strategy.marker`` is already present."""
    if not isinstance(existing, str):
        raise MergeConflict(source, "text patch applied to a non-text document")
    if strategy.marker in existing:
        return existing
    block = _block(payload)
    if strategy.operation is TextPatchOperation.PREPEND:
        return block + ("\n" + existing if existing else "")
    prefix = existing if not existing or existing.endswith("\n") else existing + "\n"
    return prefix + ("\n" if prefix else "") + block


def remove_text_patch(
    existing: Any, strategy: TextPatch, payload: str, source: str = _DOCUMENT
) -> str:
    """Take the patched block back out.

    The exact block is removed when found; otherwise every line carrying
    the marker is dropped.
    """
    if not isinstance(existing, str):
        raise MergeConflict(source, "text patch applied to a non-text document")
    if strategy.marker not in existing:
        return existing
    block = _block(payload)
    if strategy.operation is TextPatchOperation.PREPEND:
        if existing.startswith(block + "\n"):
            return existing[len(block) + 1 :]
        if existing.startswith(block):
            return existing[len(block) :]
    else:
        if existing.endswith("\n" + block):
            return existing[: -(len(block) + 1)]
        if existing.endswith(block):
            return existing[: -len(block)]
    if block in existing:
        return existing.replace(block, "", 1)
    return "".join(
        line for line in existing.splitlines(keepends=True) if strategy.marker not in line
    )


# ============================================================================
# Dispatch
# ============================================================================


def apply_fragment(document: Any, fragment: MergeFragment, source: str = _DOCUMENT) -> Any:
    """Merge one fragment into *document* using its strategy."""
    strategy = fragment.strategy
    if isinstance(strategy, DeepMergeMissingKeys):
        return deep_merge_missing_keys(document, fragment.payload, source)
    if isinstance(strategy, ArrayUnionByKey):
        return array_union_by_key(document, strategy, fragment.payload, source)
    if isinstance(strategy, ScriptAppend):
        return script_append(document, strategy, fragment.payload, source)
    if isinstance(strategy, TextPatch):
        return text_patch(document, strategy, fragment.payload, source)
    raise TypeError(f"Unknown merge strategy: {type(strategy).__name__}")


def remove_fragment(document: Any, fragment: MergeFragment, source: str = _DOCUMENT) -> Any:
    """Inverse of ``apply_fragment``."""
    strategy = fragment.strategy
    if isinstance(strategy, DeepMergeMissingKeys):
        return remove_deep_merge(document, fragment.payload, source)
    if isinstance(strategy, ArrayUnionByKey):
        return remove_array_union(document, strategy, fragment.payload, source)
    if isinstance(strategy, ScriptAppend):
        return remove_script_append(document, strategy, fragment.payload, source)
    if isinstance(strategy, TextPatch):
        return remove_text_patch(document, strategy, fragment.payload, source)
    raise TypeError(f"Unknown merge strategy: {type(strategy).__name__}")
