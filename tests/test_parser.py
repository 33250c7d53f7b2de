"""Tests for the source parsers."""

from pathlib import Path

import pytest

from mwe_reducer.errors import ExtractionError
from mwe_reducer.parser import (
    ASTFallbackParser,
    SourceParser,
    iter_source_files,
    module_name_for,
    package_name_for,
)


def _attributes(parsed, key):
    return [node.attributes[key] for node in parsed.nodes.values() if key in node.attributes]


def test_tokens_reproduce_source(python_parser, sample_python_code: str):
    """Test concatenating all tokens gives back the file byte for byte."""
    parsed = python_parser.parse_source(sample_python_code, "pkg/sample.py")
    assert "".join(t.text for t in parsed.tokens) == sample_python_code


def test_tokens_are_ordered_and_owned(python_parser, sample_python_code: str):
    """Test tokens are sorted by offset and owned by known nodes."""
    parsed = python_parser.parse_source(sample_python_code, "pkg/sample.py")
    starts = [t.start for t in parsed.tokens]
    assert starts == sorted(starts)
    assert all(t.node in parsed.nodes for t in parsed.tokens)


def test_parent_relation_by_key(python_parser, sample_python_code: str):
    """Test every node except the root names an existing parent."""
    parsed = python_parser.parse_source(sample_python_code, "pkg/sample.py")
    assert parsed.nodes[parsed.root].parent is None
    for key, node in parsed.nodes.items():
        if key != parsed.root:
            assert node.parent in parsed.nodes


def test_root_attributes(python_parser, sample_python_code: str):
    """Test the root node records its module and package."""
    parsed = python_parser.parse_source(sample_python_code, "pkg/sample.py")
    root = parsed.nodes[parsed.root]
    assert root.attributes["unit"] == "pkg.sample"
    assert root.attributes["package"] == "pkg"


def test_projected_attributes(python_parser, sample_python_code: str):
    """Test declarations, invocations and imports are projected."""
    parsed = python_parser.parse_source(sample_python_code, "pkg/sample.py")

    assert {"hello", "add", "twice", "Calculator"} <= set(_attributes(parsed, "declares"))
    assert {"limit", "hello", "Calculator", "add"} <= set(_attributes(parsed, "invokes"))
    assert "os" in _attributes(parsed, "binds")
    assert "limit" in _attributes(parsed, "binds")
    assert "1" in _attributes(parsed, "relative_level")
    assert "os" in _attributes(parsed, "references")


def test_comment_becomes_node(python_parser, sample_python_code: str):
    """Test comments are separate nodes owning their own token."""
    parsed = python_parser.parse_source(sample_python_code, "sample.py")
    comments = [n.key for n in parsed.nodes.values() if n.kind == "comment"]
    assert len(comments) == 1
    owned = [t.text for t in parsed.tokens if t.node == comments[0]]
    assert owned and owned[0].strip() == "# greet someone"


def test_ast_fallback_rejects_syntax_errors():
    """Test the fallback parser reports unparsable files."""
    with pytest.raises(ExtractionError) as exc_info:
        ASTFallbackParser().parse_source("def broken(:\n", "broken.py")
    assert exc_info.value.path == "broken.py"


def test_ast_fallback_handles_non_ascii():
    """Test offsets stay in characters for non-ASCII source."""
    source = 'name = "héllo"  # ünïcode\nprint(name)\n'
    parsed = ASTFallbackParser().parse_source(source, "u.py")
    assert "".join(t.text for t in parsed.tokens) == source


def test_source_parser_selects_backend():
    """Test the auto-selecting parser reports which backend it uses."""
    parser = SourceParser()
    assert parser.backend in ("TreeSitterParser", "ASTFallbackParser")
    assert parser.supports_language("python")


def test_parse_file_reports_unreadable(temp_dir: Path):
    """Test a missing file raises ExtractionError."""
    with pytest.raises(ExtractionError):
        ASTFallbackParser().parse_file(temp_dir / "missing.py")


def test_parse_project_relative_paths(sample_project_path: Path):
    """Test project parsing yields posix paths relative to the root."""
    parsed = ASTFallbackParser().parse_project(sample_project_path, exclude=["check.py"])
    assert [p.path for p in parsed] == ["calculator.py", "helpers.py"]


def test_iter_source_files_skips_tool_dirs(temp_dir: Path):
    """Test virtualenv and cache directories are ignored."""
    (temp_dir / "pkg").mkdir()
    (temp_dir / "pkg" / "mod.py").write_text("x = 1\n")
    (temp_dir / "__pycache__").mkdir()
    (temp_dir / "__pycache__" / "mod.py").write_text("x = 1\n")
    (temp_dir / ".venv" / "lib").mkdir(parents=True)
    (temp_dir / ".venv" / "lib" / "site.py").write_text("x = 1\n")

    files = [p.relative_to(temp_dir).as_posix() for p in iter_source_files(temp_dir)]
    assert files == ["pkg/mod.py"]


@pytest.mark.parametrize("rel_path,module,package", [
    ("main.py", "main", ""),
    ("pkg/mod.py", "pkg.mod", "pkg"),
    ("pkg/__init__.py", "pkg", "pkg"),
    ("a/b/c.py", "a.b.c", "a.b"),
])
def test_module_names(rel_path, module, package):
    assert module_name_for(rel_path) == module
    assert package_name_for(rel_path) == package
