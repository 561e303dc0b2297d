"""Template values and the bundled template catalog.

A ``Template`` is rendered into bytes with an explicit context mapping.
The reconciliation engine only ever sees the rendered bytes, through the
``TemplateRenderer`` protocol, so callers can substitute any renderer.

Placeholders use ``{{name}}`` (surrounding spaces allowed). Rendering
fails on placeholders missing from the context rather than leaving
template syntax in a project file.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from importlib.resources import files
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Mapping, Protocol

from dotward_cli.errors import TemplateError

TEMPLATE_ROOT_ENV_VAR = "DOTWARD_TEMPLATE_ROOT"

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


@dataclass(frozen=True)
class Template:
    template_id: str
    source: str

    def placeholders(self) -> set[str]:
        return set(_PLACEHOLDER.findall(self.source))

    def render(self, context: Mapping[str, str]) -> bytes:
        missing = sorted(self.placeholders() - set(context))
        if missing:
            raise TemplateError(
                f"Template {self.template_id} needs undefined variable(s): {', '.join(missing)}"
            )
        rendered = _PLACEHOLDER.sub(lambda m: str(context[m.group(1)]), self.source)
        return rendered.encode("utf-8")


class TemplateRenderer(Protocol):
    """Anything that turns a template id into rendered bytes."""

    def render(self, template_id: str) -> bytes: ...


def get_template_root() -> Traversable:
    """Return the directory holding bundled templates.

    Resolution order:
    1. ``DOTWARD_TEMPLATE_ROOT`` environment variable (CI/testing)
    2. ``dotward_cli/assets/templates`` inside the installed package
    """
    if env_root := os.environ.get(TEMPLATE_ROOT_ENV_VAR):
        root = Path(env_root)
        if root.is_dir():
            return root
        raise TemplateError(f"{TEMPLATE_ROOT_ENV_VAR} path does not exist: {env_root}")
    return files("dotward_cli").joinpath("assets", "templates")


class TemplateCatalog:
    """Loads templates by id from a directory and renders them with one context."""

    def __init__(self, root: Traversable | Path, context: Mapping[str, str] | None = None) -> None:
        self._root = root
        self._context = dict(context or {})
        self._cache: dict[str, Template] = {}

    @classmethod
    def bundled(cls, context: Mapping[str, str] | None = None) -> TemplateCatalog:
        return cls(get_template_root(), context)

    @property
    def context(self) -> Mapping[str, str]:
        return dict(self._context)

    def get(self, template_id: str) -> Template:
        if template_id in self._cache:
            return self._cache[template_id]
        if template_id.startswith("/") or ".." in template_id.split("/"):
            raise TemplateError(f"Invalid template id: {template_id}")
        resource = self._root.joinpath(*template_id.split("/"))
        if not resource.is_file():
            raise TemplateError(f"Template not found: {template_id}")
        template = Template(template_id, resource.read_text(encoding="utf-8"))
        self._cache[template_id] = template
        return template

    def render(self, template_id: str) -> bytes:
        return self.get(template_id).render(self._context)


class StaticRenderer:
    """Renderer backed by a fixed mapping of template id to content."""

    def __init__(self, contents: Mapping[str, str | bytes]) -> None:
        self._contents = dict(contents)

    def render(self, template_id: str) -> bytes:
        try:
            content = self._contents[template_id]
        except KeyError:
            raise TemplateError(f"Template not found: {template_id}") from None
        return content.encode("utf-8") if isinstance(content, str) else content
