"""
test_cli.py - Command line interface tests
"""

import json
from pathlib import Path

import pytest
import typer
from typer.testing import CliRunner

from scaffoldr.cli import app
from scaffoldr.cli.parsers import parse_var, parse_vars, parse_vars_file

runner = CliRunner()


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, templates_dir, tmp_path):
    monkeypatch.setenv("SCAFFOLDR_TEMPLATE_DIRS", json.dumps([str(templates_dir)]))
    monkeypatch.setenv("SCAFFOLDR_CACHE_DIR", str(tmp_path / "cache"))


@pytest.fixture
def webapp(templates_dir, make_template) -> Path:
    return make_template(
        templates_dir / "webapp",
        files={"README.md": "# {{ project_name }} on {{ port }}\n"},
        variables=[{"name": "project_name", "required": True}],
    )


# =============================================================================
# Parsers
# =============================================================================

class TestParsers:
    def test_parse_var_decodes_json_literals(self):
        assert parse_var("port=8080") == ("port", 8080)
        assert parse_var("debug=true") == ("debug", True)
        assert parse_var("tags=[\"a\",\"b\"]") == ("tags", ["a", "b"])
        assert parse_var("name=My App") == ("name", "My App")
        assert parse_var("expr=a=b") == ("expr", "a=b")

    def test_parse_var_rejects_malformed(self):
        with pytest.raises(typer.BadParameter):
            parse_var("novalue")
        with pytest.raises(typer.BadParameter):
            parse_var("=value")

    def test_parse_vars_later_wins(self):
        assert parse_vars(["a=1", "a=2"]) == {"a": 2}

    def test_parse_vars_file(self, tmp_path):
        as_json = tmp_path / "vars.json"
        as_json.write_text('{"a": 1}')
        as_yaml = tmp_path / "vars.yaml"
        as_yaml.write_text("a: 1\nb: [x, y]\n")
        empty = tmp_path / "empty.yaml"
        empty.write_text("")

        assert parse_vars_file(as_json) == {"a": 1}
        assert parse_vars_file(as_yaml) == {"a": 1, "b": ["x", "y"]}
        assert parse_vars_file(empty) == {}

    def test_parse_vars_file_rejects_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(typer.BadParameter):
            parse_vars_file(path)


# =============================================================================
# Commands
# =============================================================================

class TestGenerateCommand:
    def test_generate(self, webapp, tmp_path):
        out = tmp_path / "out"

        result = runner.invoke(
            app, ["generate", "webapp", str(out), "--var", "project_name=Demo", "--var", "port=80"]
        )

        assert result.exit_code == 0, result.output
        assert "webapp@1.0.0" in result.output
        assert (out / "README.md").read_text() == "# Demo on 80\n"

    def test_vars_file_is_overridden_by_var(self, webapp, tmp_path):
        out = tmp_path / "out"
        vars_file = tmp_path / "vars.yaml"
        vars_file.write_text("project_name: FromFile\nport: 1\n")

        result = runner.invoke(
            app,
            ["generate", "webapp", str(out), "--vars-file", str(vars_file), "--var", "port=2"],
        )

        assert result.exit_code == 0, result.output
        assert (out / "README.md").read_text() == "# FromFile on 2\n"

    def test_dry_run(self, webapp, tmp_path):
        out = tmp_path / "out"

        result = runner.invoke(
            app,
            ["generate", "webapp", str(out), "--dry-run", "--var", "project_name=x", "--var", "port=1"],
        )

        assert result.exit_code == 0, result.output
        assert not out.exists()

    def test_failure_exits_with_one(self, tmp_path):
        result = runner.invoke(app, ["generate", "missing", str(tmp_path / "out")])

        assert result.exit_code == 1
        assert "Generation failed during resolve_template" in result.output

    def test_partial_exits_with_two(self, webapp, tmp_path):
        result = runner.invoke(
            app, ["generate", "webapp", str(tmp_path / "out"), "--var", "project_name=x"]
        )

        assert result.exit_code == 2
        assert "1 failed" in result.output

    def test_extra_template_dir(self, make_template, tmp_path):
        extra = tmp_path / "extra"
        make_template(extra / "cli", files={"a.txt": "a"}, name="cli")

        result = runner.invoke(
            app, ["generate", "cli", str(tmp_path / "out"), "-t", str(extra)]
        )

        assert result.exit_code == 0, result.output


class TestListCommand:
    def test_list(self, webapp):
        result = runner.invoke(app, ["list"])

        assert result.exit_code == 0
        assert "webapp@1.0.0  Web application starter" in result.output

    def test_list_json(self, webapp):
        result = runner.invoke(app, ["list", "--json"])

        assert result.exit_code == 0
        assert json.loads(result.output)[0]["name"] == "webapp"

    def test_list_empty(self):
        result = runner.invoke(app, ["list", "--category", "nothing"])

        assert result.exit_code == 0
        assert "No templates found." in result.output


class TestInstallCommand:
    def test_install(self, webapp, tmp_path):
        dest = tmp_path / "installed"

        result = runner.invoke(app, ["install", "webapp", "--dest", str(dest)])

        assert result.exit_code == 0, result.output
        assert (dest / "template.json").exists()

    def test_install_twice_reports_already_installed(self, webapp, tmp_path):
        dest = tmp_path / "installed"
        runner.invoke(app, ["install", "webapp", "--dest", str(dest)])

        result = runner.invoke(app, ["install", "webapp", "--dest", str(dest)])

        assert result.exit_code == 0
        assert "already installed" in result.output

    def test_install_unknown(self):
        result = runner.invoke(app, ["install", "nope"])

        assert result.exit_code == 1
        assert "Install failed" in result.output
