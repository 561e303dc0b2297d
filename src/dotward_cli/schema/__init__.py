"""Schema registry: the declared desired state of a project tree."""

from dotward_cli.schema.loader import (
    SchemaDocument,
    load_bundled_registry,
    load_registry,
    parse_schema,
)
from dotward_cli.schema.models import (
    NOT_FOUND,
    ArrayUnionByKey,
    DeepMergeMissingKeys,
    DeprecatedEntry,
    DeprecatedKind,
    DirectoryDefinition,
    DirectoryKind,
    DocumentFormat,
    FileDefinition,
    KeyExtractor,
    ManagedFileDefinition,
    MergeFragment,
    MergeStrategy,
    OwnershipKind,
    ScriptAppend,
    TextPatch,
    TextPatchOperation,
)
from dotward_cli.schema.registry import SchemaRegistry, normalize_path

__all__ = [
    "NOT_FOUND",
    "ArrayUnionByKey",
    "DeepMergeMissingKeys",
    "DeprecatedEntry",
    "DeprecatedKind",
    "DirectoryDefinition",
    "DirectoryKind",
    "DocumentFormat",
    "FileDefinition",
    "KeyExtractor",
    "ManagedFileDefinition",
    "MergeFragment",
    "MergeStrategy",
    "OwnershipKind",
    "SchemaDocument",
    "SchemaRegistry",
    "ScriptAppend",
    "TextPatch",
    "TextPatchOperation",
    "load_bundled_registry",
    "load_registry",
    "normalize_path",
    "parse_schema",
]
