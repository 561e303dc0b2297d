"""Tests for template rendering and the template catalog."""

from __future__ import annotations

from pathlib import Path

import pytest

from dotward_cli.errors import TemplateError
from dotward_cli.templates import StaticRenderer, Template, TemplateCatalog, get_template_root


def test_render_substitutes_placeholders():
    template = Template("t", "# {{ project_name }} ({{schema_version}})\n")
    assert template.render({"project_name": "demo", "schema_version": "1.0.0"}) == b"# demo (1.0.0)\n"


def test_undefined_placeholder_fails():
    with pytest.raises(TemplateError, match="project_name"):
        Template("t", "{{ project_name }}").render({})


def test_text_without_placeholders_is_verbatim():
    source = 'echo "${HOME}" {not a placeholder}\n'
    assert Template("t", source).render({}) == source.encode()


class TestCatalog:
    def test_loads_nested_templates(self, tmp_path: Path):
        (tmp_path / "hooks").mkdir()
        (tmp_path / "hooks" / "start.sh").write_text("#!/bin/sh\necho {{ name }}\n")

        catalog = TemplateCatalog(tmp_path, {"name": "demo"})

        assert catalog.render("hooks/start.sh") == b"#!/bin/sh\necho demo\n"

    def test_missing_template(self, tmp_path: Path):
        with pytest.raises(TemplateError, match="not found"):
            TemplateCatalog(tmp_path).render("nope.md")

    @pytest.mark.parametrize("template_id", ["/etc/passwd", "../secret.md"])
    def test_escaping_ids_are_rejected(self, tmp_path: Path, template_id):
        with pytest.raises(TemplateError, match="Invalid template id"):
            TemplateCatalog(tmp_path).get(template_id)

    def test_env_var_overrides_template_root(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("DOTWARD_TEMPLATE_ROOT", str(tmp_path))
        assert Path(str(get_template_root())) == tmp_path

    def test_env_var_pointing_nowhere_fails(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("DOTWARD_TEMPLATE_ROOT", str(tmp_path / "missing"))
        with pytest.raises(TemplateError):
            get_template_root()

    def test_bundled_templates_render(self, monkeypatch):
        monkeypatch.delenv("DOTWARD_TEMPLATE_ROOT", raising=False)
        catalog = TemplateCatalog.bundled({"project_name": "demo", "schema_version": "0.4.0"})
        assert b"demo" in catalog.render("PROJECT.md")


def test_static_renderer():
    renderer = StaticRenderer({"a": "text", "b": b"\x00bytes"})
    assert renderer.render("a") == b"text"
    assert renderer.render("b") == b"\x00bytes"
    with pytest.raises(TemplateError):
        renderer.render("c")
