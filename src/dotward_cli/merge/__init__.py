"""Merge strategy library for managed files."""

from __future__ import annotations

from dotward_cli.merge.documents import (
    empty_document,
    is_empty_document,
    parse_document,
    serialize_document,
)
from dotward_cli.merge.strategies import (
    apply_fragment,
    array_union_by_key,
    deep_merge_missing_keys,
    remove_array_union,
    remove_deep_merge,
    remove_fragment,
    remove_script_append,
    remove_text_patch,
    script_append,
    text_patch,
)
from dotward_cli.schema.models import ManagedFileDefinition


def merge_managed(definition: ManagedFileDefinition, current: bytes | None) -> bytes:
    """Return the bytes *definition* wants on disk given the *current* content.

    When every fragment is already present the current bytes are returned
    untouched, so a file the user reformatted is not rewritten.

    Raises:
        MergeConflict: If the content cannot be parsed or a fragment's
            anchor has the wrong shape.
    """
    original = parse_document(definition.format, current, definition.path)
    document = original
    for fragment in definition.fragments:
        document = apply_fragment(document, fragment, definition.path)
    if current is not None and document == original:
        return current
    return serialize_document(definition.format, document)


def unmerge_managed(definition: ManagedFileDefinition, current: bytes) -> bytes | None:
    """Remove every fragment of *definition* from *current*.

    Returns ``None`` when the file should be deleted: nothing but the
    framework's content was left and ``remove_if_empty`` is set.
    """
    original = parse_document(definition.format, current, definition.path)
    document = original
    for fragment in reversed(definition.fragments):
        document = remove_fragment(document, fragment, definition.path)
    if definition.remove_if_empty and is_empty_document(definition.format, document):
        return None
    if document == original:
        return current
    return serialize_document(definition.format, document)


__all__ = [
    "apply_fragment",
    "array_union_by_key",
    "deep_merge_missing_keys",
    "empty_document",
    "is_empty_document",
    "merge_managed",
    "parse_document",
    "remove_array_union",
    "remove_deep_merge",
    "remove_fragment",
    "remove_script_append",
    "remove_text_patch",
    "script_append",
    "serialize_document",
    "text_patch",
    "unmerge_managed",
]
