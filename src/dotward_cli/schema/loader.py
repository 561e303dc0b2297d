"""YAML schema manifest loading.

The manifest is data produced by the template-authoring side of the
toolkit. It is parsed with ruamel.yaml, validated with pydantic, and
converted into an immutable ``SchemaRegistry``.

Example document::

    version: "0.4.0"
    owned:
      - path: .dotward/hooks/session-start.sh
        template: hooks/session-start.sh
        executable: true
    managed:
      - path: .claude/settings.json
        format: json
        fragments:
          - strategy: array_union_by_key
            target: hooks.SessionStart
            key: {path: "hooks[].command", pattern: '(\\.dotward/hooks/\\S+)'}
            payload: [...]
    directories:
      - path: .dotward/learnings
        kind: preserved
    deprecated:
      - path: .dotward/hooks/old.sh
        since: "0.3.0"
        fingerprints: [<sha256>]
"""

from __future__ import annotations

import logging
import os
from importlib.resources import files
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError
from typing_extensions import Annotated

from dotward_cli.errors import SchemaIntegrityError
from dotward_cli.schema.models import (
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
    OwnershipKind,
    ScriptAppend,
    TextPatch,
    TextPatchOperation,
)
from dotward_cli.schema.registry import SchemaRegistry

logger = logging.getLogger(__name__)

SCHEMA_ENV_VAR = "DOTWARD_SCHEMA"
BUNDLED_SCHEMA = "schema.yaml"


class OwnedFileModel(BaseModel):
    path: str = Field(..., min_length=1)
    template: str = Field(..., min_length=1, description="Template id in the template catalog")
    ownership: OwnershipKind = OwnershipKind.ALWAYS_REGENERATE
    executable: bool = False
    packs: List[str] = Field(default_factory=list)


class KeyExtractorModel(BaseModel):
    path: str = ""
    pattern: Optional[str] = None


class DeepMergeModel(BaseModel):
    strategy: Literal["deep_merge"]
    payload: Dict[str, Any]


class ArrayUnionModel(BaseModel):
    strategy: Literal["array_union_by_key"]
    target: str = Field(..., min_length=1)
    key: KeyExtractorModel
    payload: List[Any]


class ScriptAppendModel(BaseModel):
    strategy: Literal["script_append"]
    target: str = Field(..., min_length=1)
    payload: Dict[str, str]


class TextPatchModel(BaseModel):
    strategy: Literal["text_patch"]
    operation: TextPatchOperation = TextPatchOperation.PREPEND
    marker: str = Field(..., min_length=1)
    payload: str


FragmentModel = Annotated[
    Union[DeepMergeModel, ArrayUnionModel, ScriptAppendModel, TextPatchModel],
    Field(discriminator="strategy"),
]


class ManagedFileModel(BaseModel):
    path: str = Field(..., min_length=1)
    format: DocumentFormat = DocumentFormat.JSON
    fragments: List[FragmentModel] = Field(default_factory=list)
    create_if_missing: bool = True
    remove_if_empty: bool = False
    packs: List[str] = Field(default_factory=list)


class DirectoryModel(BaseModel):
    path: str = Field(..., min_length=1)
    kind: DirectoryKind = DirectoryKind.OWNED
    packs: List[str] = Field(default_factory=list)


class DeprecatedModel(BaseModel):
    path: str = Field(..., min_length=1)
    kind: DeprecatedKind = DeprecatedKind.FILE
    since: str = Field(..., min_length=1)
    fingerprints: List[str] = Field(default_factory=list)


class SchemaDocument(BaseModel):
    """Top-level schema manifest document."""

    version: str = Field(..., min_length=1)
    owned: List[OwnedFileModel] = Field(default_factory=list)
    managed: List[ManagedFileModel] = Field(default_factory=list)
    directories: List[DirectoryModel] = Field(default_factory=list)
    deprecated: List[DeprecatedModel] = Field(default_factory=list)

    def to_registry(self) -> SchemaRegistry:
        return SchemaRegistry(
            self.version,
            owned=[
                FileDefinition(
                    path=item.path,
                    ownership=item.ownership,
                    template_id=item.template,
                    executable=item.executable,
                    packs=tuple(item.packs),
                )
                for item in self.owned
            ],
            managed=[
                ManagedFileDefinition(
                    path=item.path,
                    format=item.format,
                    fragments=tuple(_to_fragment(f) for f in item.fragments),
                    create_if_missing=item.create_if_missing,
                    remove_if_empty=item.remove_if_empty,
                    packs=tuple(item.packs),
                )
                for item in self.managed
            ],
            deprecated=[
                DeprecatedEntry(
                    path=item.path,
                    kind=item.kind,
                    since_version=item.since,
                    historical_fingerprints=tuple(f.lower() for f in item.fingerprints),
                )
                for item in self.deprecated
            ],
            directories=[
                DirectoryDefinition(path=item.path, kind=item.kind, packs=tuple(item.packs))
                for item in self.directories
            ],
        )


def _to_fragment(item: DeepMergeModel | ArrayUnionModel | ScriptAppendModel | TextPatchModel) -> MergeFragment:
    if isinstance(item, DeepMergeModel):
        return MergeFragment(DeepMergeMissingKeys(), item.payload)
    if isinstance(item, ArrayUnionModel):
        key = KeyExtractor(path=item.key.path, pattern=item.key.pattern)
        return MergeFragment(ArrayUnionByKey(target=item.target, key=key), item.payload)
    if isinstance(item, ScriptAppendModel):
        return MergeFragment(ScriptAppend(target=item.target), item.payload)
    if isinstance(item, TextPatchModel):
        return MergeFragment(TextPatch(operation=item.operation, marker=item.marker), item.payload)
    raise TypeError(f"Unknown fragment model: {type(item).__name__}")


def _plain(node: Any) -> Any:
    """Convert ruamel containers into plain dicts and lists."""
    if isinstance(node, dict):
        return {str(k): _plain(v) for k, v in node.items()}
    if isinstance(node, list):
        return [_plain(v) for v in node]
    return node


def parse_schema(text: str, source: str = "<schema>") -> SchemaRegistry:
    """Parse a YAML schema manifest into a registry.

    Raises:
        SchemaIntegrityError: If the YAML is malformed, fails model
            validation, or violates an ownership invariant.
    """
    yaml = YAML(typ="safe")
    try:
        data = yaml.load(text)
    except YAMLError as exc:
        raise SchemaIntegrityError(f"Invalid YAML in {source}: {exc}") from exc

    if not isinstance(data, dict):
        raise SchemaIntegrityError(f"Schema manifest {source} must be a mapping")

    try:
        document = SchemaDocument(**_plain(data))
    except ValidationError as exc:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        ]
        raise SchemaIntegrityError(f"Schema manifest {source} is invalid", problems) from exc

    registry = document.to_registry()
    logger.info("Loaded schema v%s from %s", registry.version, source)
    return registry


def load_registry(path: Path) -> SchemaRegistry:
    """Load a schema manifest from *path*."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SchemaIntegrityError(f"Cannot read schema manifest {path}: {exc}") from exc
    return parse_schema(text, source=str(path))


def load_bundled_registry() -> SchemaRegistry:
    """Load the schema shipped with the package.

    Resolution order:
    1. ``DOTWARD_SCHEMA`` environment variable (CI/testing)
    2. ``dotward_cli/assets/schema.yaml`` inside the installed package
    """
    if env_path := os.environ.get(SCHEMA_ENV_VAR):
        return load_registry(Path(env_path))

    resource = files("dotward_cli").joinpath("assets", BUNDLED_SCHEMA)
    return parse_schema(resource.read_text(encoding="utf-8"), source=f"dotward_cli/assets/{BUNDLED_SCHEMA}")
