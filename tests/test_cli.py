"""Tests for the snippet-kb command line."""

import json
import shutil
from pathlib import Path

import pytest
from typer.testing import CliRunner

from snippet_kb.cli import app
from snippet_kb.cli_utils import EXIT_CONFIG_ERROR, EXIT_ERROR, EXIT_SUCCESS

runner = CliRunner()

requires_node = pytest.mark.skipif(
    shutil.which("node") is None,
    reason="node not installed - skipping sandbox execution tests",
)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def scope_dir(tmp_path: Path, closures_document: str) -> Path:
    """Directory holding only the warning-free closures document."""
    root = tmp_path / "scope"
    root.mkdir()
    (root / "scope.md").write_text(closures_document, encoding="utf-8")
    return root


@pytest.fixture
def bad_node_config(tmp_path: Path) -> Path:
    """Config file pointing at a node executable that does not exist."""
    path = tmp_path / "snippet-kb.yaml"
    path.write_text("sandbox:\n  node_path: definitely-not-node-xyz\n")
    return path


# =============================================================================
# ingest / tags
# =============================================================================


class TestIngestCommand:
    """Tests for `snippet-kb ingest`."""

    def test_reports_counts_and_warnings(self, notes_dir: Path) -> None:
        """Test entries are counted and parse warnings are shown."""
        result = runner.invoke(app, ["ingest", str(notes_dir)])

        assert result.exit_code == EXIT_SUCCESS
        assert "Loaded 4 entries (3 with code, 7 tags)" in result.output
        assert "Missing Tags" in result.output

    def test_strict_fails_on_warnings(self, notes_dir: Path) -> None:
        """Test --strict turns warnings into a failing exit code."""
        result = runner.invoke(app, ["ingest", str(notes_dir), "--strict"])
        assert result.exit_code == EXIT_ERROR

    def test_strict_passes_clean_documents(self, scope_dir: Path) -> None:
        """Test --strict succeeds when nothing is wrong."""
        result = runner.invoke(app, ["ingest", str(scope_dir), "--strict"])
        assert result.exit_code == EXIT_SUCCESS

    def test_missing_path(self, tmp_path: Path) -> None:
        """Test a path that does not exist is an error."""
        result = runner.invoke(app, ["ingest", str(tmp_path / "missing")])

        assert result.exit_code == EXIT_ERROR
        assert "Path not found" in result.output

    def test_invalid_config(self, scope_dir: Path, tmp_path: Path) -> None:
        """Test an invalid config file exits with the config error code."""
        config = tmp_path / "bad.yaml"
        config.write_text("sandbox:\n  timeout_ms: 1\n")

        result = runner.invoke(app, ["ingest", str(scope_dir), "--config", str(config)])
        assert result.exit_code == EXIT_CONFIG_ERROR


class TestTagsCommand:
    """Tests for `snippet-kb tags`."""

    def test_lists_tags(self, scope_dir: Path) -> None:
        """Test every tag is listed."""
        result = runner.invoke(app, ["tags", str(scope_dir)])

        assert result.exit_code == EXIT_SUCCESS
        for tag in ("closures", "functions", "javascript", "hoisting"):
            assert tag in result.output


# =============================================================================
# Queries
# =============================================================================


class TestQueryCommands:
    """Tests for tag, search and sample commands."""

    def test_tag_json(self, scope_dir: Path) -> None:
        """Test tag lookup returns exactly the tagged entry."""
        result = runner.invoke(app, ["tag", "closures", str(scope_dir), "--json"])

        assert result.exit_code == EXIT_SUCCESS
        payload = json.loads(result.output)
        assert payload["query"]["kind"] == "by_tag"
        assert [e["title"] for e in payload["entries"]] == ["Closures"]
        assert payload["entries"][0]["expected_output"] == ["1", "2"]

    def test_tag_unknown(self, scope_dir: Path) -> None:
        """Test an unknown tag prints a friendly message."""
        result = runner.invoke(app, ["tag", "generators", str(scope_dir)])

        assert result.exit_code == EXIT_SUCCESS
        assert "No matching entries" in result.output

    def test_search_table(self, scope_dir: Path) -> None:
        """Test search prints matching entries."""
        result = runner.invoke(app, ["search", "hoisted", str(scope_dir)])

        assert result.exit_code == EXIT_SUCCESS
        assert "Hoisting" in result.output
        assert "Closures" not in result.output

    def test_sample_is_reproducible(self, scope_dir: Path) -> None:
        """Test the same seed gives the same sample."""
        args = ["sample", "1", str(scope_dir), "--seed", "99", "--json"]
        first = json.loads(runner.invoke(app, args).output)
        second = json.loads(runner.invoke(app, args).output)

        assert len(first["entries"]) == 1
        assert first["entries"] == second["entries"]
        assert first["query"]["seed"] == 99

    def test_sample_invalid_difficulty(self, scope_dir: Path) -> None:
        """Test an unknown difficulty is a usage error."""
        result = runner.invoke(app, ["sample", "1", str(scope_dir), "--difficulty", "expert"])

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "Invalid difficulty" in result.output


# =============================================================================
# verify
# =============================================================================


class TestVerifyCommand:
    """Tests for `snippet-kb verify`."""

    def test_missing_node(self, scope_dir: Path, bad_node_config: Path) -> None:
        """Test a missing interpreter exits with the config error code."""
        result = runner.invoke(app, ["verify", str(scope_dir), "-c", str(bad_node_config)])

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "Node.js executable not found" in result.output

    @requires_node
    def test_all_match(self, scope_dir: Path) -> None:
        """Test verification succeeds when every snippet matches."""
        result = runner.invoke(app, ["verify", str(scope_dir), "--json"])

        assert result.exit_code == EXIT_SUCCESS
        payload = json.loads(result.output)
        assert [item["matched"] for item in payload] == [True, True]
        assert [item["passed"] for item in payload] == [True, True]
        assert payload[0]["stdout_lines"] == ["1", "2"]

    @requires_node
    def test_mismatch_fails(self, tmp_path: Path) -> None:
        """Test a wrong expectation makes verify exit with 1."""
        doc = tmp_path / "wrong.md"
        doc.write_text("# Wrong\ntags: t\n\n```js\nconsole.log(2)\n```\n\n```output\n1\n```\n")

        result = runner.invoke(app, ["verify", str(doc)])
        assert result.exit_code == EXIT_ERROR

    @requires_node
    def test_codeless_entry_fails(self, tmp_path: Path) -> None:
        """Test selecting an entry with no code is reported as a failure."""
        doc = tmp_path / "prose.md"
        doc.write_text("# Prose\nid: prose\ntags: t\n\nJust words.\n")

        result = runner.invoke(app, ["verify", str(doc), "--id", "prose", "--json"])

        assert result.exit_code == EXIT_ERROR
        assert "1 of 1 entries failed verification" in result.output

    @requires_node
    def test_throw_without_expected_output_fails(self, tmp_path: Path) -> None:
        """Test a snippet that throws is not reported as a pass."""
        doc = tmp_path / "throws.md"
        doc.write_text("# Throws\ntags: t\n\n```js\nundefinedFn();\n```\n")

        result = runner.invoke(app, ["verify", str(doc)])

        assert result.exit_code == EXIT_ERROR
        assert "error" in result.output
        assert "ReferenceError" in result.output

    @requires_node
    def test_selected_ids(self, scope_dir: Path) -> None:
        """Test --id restricts which entries run."""
        result = runner.invoke(app, ["verify", str(scope_dir), "--id", "scope.md#2", "--json"])

        payload = json.loads(result.output)
        assert [item["entry_id"] for item in payload] == ["scope.md#2"]
