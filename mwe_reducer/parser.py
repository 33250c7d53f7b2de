"""Source parser turning Python files into syntax-node tables and token streams.

Two backends produce the same :class:`~mwe_reducer.models.ParsedSource` shape:

- **Tree-sitter** (primary): error-tolerant concrete syntax tree in which every
  lexical token is a leaf, so the token stream reproduces the file exactly.
- **ast + tokenize** (fallback): used when tree-sitter is unavailable; tokens
  come from :mod:`tokenize` and are owned by the deepest positioned ``ast``
  node that spans them.

Node attributes needed by the cross-reference rules are computed through
per-backend projection tables (node kind -> projection function), so support
for a new kind is added by registering one more entry.
"""

from __future__ import annotations

import ast
import fnmatch
import io
import itertools
import logging
import tokenize
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import SKIP_DIRS, SUPPORTED_EXTENSIONS
from .errors import ExtractionError
from .models import ParsedSource, SyntaxNode, Token

logger = logging.getLogger(__name__)

Projection = Callable[[Any], Dict[str, str]]

IMPORT_KINDS = {"import_statement", "import_from_statement", "future_import_statement"}


# ===================================================================
# Abstract Parser Interface
# ===================================================================

class Parser(ABC):
    """Abstract base class for all source parsers."""

    @abstractmethod
    def parse_source(self, source: str, rel_path: str) -> ParsedSource:
        """Parse *source* (the contents of *rel_path*) into a ParsedSource."""
        ...

    @abstractmethod
    def supports_language(self, language: str) -> bool:
        """Return True if this parser can handle *language*."""
        ...

    def parse_file(
        self,
        file_path: Path,
        project_root: Optional[Path] = None,
        source: Optional[str] = None,
    ) -> ParsedSource:
        if source is None:
            try:
                source = file_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise ExtractionError(f"Unable to read source: {exc}", path=str(file_path)) from exc
        rel_path = (
            file_path.relative_to(project_root).as_posix()
            if project_root is not None
            else file_path.name
        )
        return self.parse_source(source, rel_path)

    def parse_project(
        self,
        project_root: Path,
        exclude: Sequence[str] = (),
    ) -> List[ParsedSource]:
        """Parse every reducible file below *project_root*."""
        return [
            self.parse_file(path, project_root)
            for path in iter_source_files(project_root, exclude)
        ]


def iter_source_files(project_root: Path, exclude: Sequence[str] = ()) -> List[Path]:
    """List reducible source files, skipping tool directories and *exclude* globs."""
    files: List[Path] = []
    for ext in sorted(SUPPORTED_EXTENSIONS):
        for file_path in sorted(project_root.rglob(f"*{ext}")):
            rel = file_path.relative_to(project_root)
            if any(part in SKIP_DIRS for part in rel.parts):
                continue
            if any(fnmatch.fnmatch(rel.as_posix(), pattern) for pattern in exclude):
                continue
            files.append(file_path)
    return files


def module_name_for(rel_path: str) -> str:
    name = rel_path.replace("\\", "/").removesuffix(".py").replace("/", ".")
    return name.removesuffix(".__init__")


def package_name_for(rel_path: str) -> str:
    unit = module_name_for(rel_path)
    if rel_path.endswith("__init__.py"):
        return unit
    return unit.rpartition(".")[0]


def _root_attributes(rel_path: str) -> Dict[str, str]:
    return {"unit": module_name_for(rel_path), "package": package_name_for(rel_path)}


# ===================================================================
# Tree-sitter Parser (Primary)
# ===================================================================

def _ts_text(node: Any) -> str:
    return node.text.decode("utf-8") if node is not None and node.text is not None else ""


def _ts_inside(node: Any, kinds: Iterable[str]) -> bool:
    kinds = set(kinds)
    current = node.parent
    while current is not None:
        if current.type in kinds:
            return True
        current = current.parent
    return False


def _ts_bound_name(node: Any) -> str:
    """Name bound in the importing module by one imported item."""
    if node.type == "aliased_import":
        return _ts_text(node.child_by_field_name("alias"))
    return _ts_text(node)


def _ts_definition(declaration: str) -> Projection:
    def project(node: Any) -> Dict[str, str]:
        name = _ts_text(node.child_by_field_name("name"))
        return {"declares": name, "declaration": declaration} if name else {}
    return project


def _ts_is_callee(node: Any) -> bool:
    parent = node.parent
    if parent is None or parent.type != "call":
        return False
    func = parent.child_by_field_name("function")
    return func is not None and func.id == node.id


def _ts_attribute(node: Any) -> Dict[str, str]:
    # ``obj.name(...)``: the attribute node owns the dot, the call owns nothing
    if not _ts_is_callee(node):
        return {}
    return {"invokes": _ts_text(node.child_by_field_name("attribute"))}


def _ts_import(node: Any) -> Dict[str, str]:
    modules: List[str] = []
    binds: List[str] = []
    for child in node.children_by_field_name("name"):
        if child.type == "aliased_import":
            modules.append(_ts_text(child.child_by_field_name("name")))
            binds.append(_ts_bound_name(child))
        else:
            dotted = _ts_text(child)
            modules.append(dotted)
            binds.append(dotted.split(".")[0])
    return {"imports": ",".join(modules), "binds": ",".join(binds)}


def _ts_import_from(node: Any) -> Dict[str, str]:
    attrs: Dict[str, str] = {}
    module = node.child_by_field_name("module_name")
    if module is not None and module.type == "relative_import":
        prefix = ""
        dotted = ""
        for sub in module.children:
            if sub.type == "import_prefix":
                prefix = _ts_text(sub)
            elif sub.type == "dotted_name":
                dotted = _ts_text(sub)
        attrs["relative_level"] = str(prefix.count("."))
        attrs["imports"] = dotted
    else:
        attrs["imports"] = _ts_text(module)
    names = [
        _ts_bound_name(child).split(".")[-1]
        for child in node.children_by_field_name("name")
    ]
    attrs["binds"] = ",".join(n for n in names if n)
    return attrs


def _ts_identifier(node: Any) -> Dict[str, str]:
    parent = node.parent
    if parent is None or _ts_inside(node, IMPORT_KINDS):
        return {}
    if parent.type in ("function_definition", "class_definition", "attribute", "keyword_argument"):
        for field in ("name", "attribute"):
            named = parent.child_by_field_name(field)
            if named is not None and named.id == node.id:
                return {}
    name = _ts_text(node)
    if _ts_is_callee(node):
        return {"invokes": name, "references": name}
    return {"references": name}


TS_PROJECTIONS: Dict[str, Projection] = {
    "function_definition": _ts_definition("function"),
    "class_definition": _ts_definition("class"),
    "attribute": _ts_attribute,
    "import_statement": _ts_import,
    "import_from_statement": _ts_import_from,
    "identifier": _ts_identifier,
}


def _ts_field(node: Any) -> Optional[str]:
    parent = node.parent
    if parent is None:
        return None
    for index, child in enumerate(parent.children):
        if child.id == node.id:
            field = parent.field_name_for_child(index)
            return f"{parent.type}.{field}" if field else None
    return None


class TreeSitterParser(Parser):
    """Error-tolerant parser built on Tree-sitter.

    Every non-empty leaf of the concrete syntax tree is one token. Its owner
    is the leaf itself when it is a named node (identifiers, literals,
    comments) and its parent otherwise (keywords, punctuation). Whitespace
    between leaves is carried by the following token.
    """

    _GRAMMAR_MODULES: Dict[str, str] = {
        "python": "tree_sitter_python",
    }

    def __init__(self, languages: Optional[List[str]] = None) -> None:
        self._parsers: Dict[str, Any] = {}
        self._requested_languages = languages or ["python"]
        self._init_parsers()

    def _init_parsers(self) -> None:
        try:
            import tree_sitter  # type: ignore[import-untyped]  # noqa: F401
        except ImportError:
            logger.warning(
                "tree-sitter is not installed -- "
                "Tree-sitter parsing unavailable. "
                "Install with: pip install tree-sitter tree-sitter-python"
            )
            return

        from tree_sitter import Language, Parser as TSParser  # type: ignore[import-untyped]

        for lang in self._requested_languages:
            mod_name = self._GRAMMAR_MODULES.get(lang)
            if mod_name is None:
                logger.warning("No grammar module mapped for language '%s'", lang)
                continue
            try:
                import importlib
                mod = importlib.import_module(mod_name)
                self._parsers[lang] = TSParser(Language(mod.language()))
                logger.debug("Loaded tree-sitter parser for %s", lang)
            except ImportError:
                logger.warning(
                    "Grammar package '%s' not installed for language '%s'. "
                    "Install with: pip install %s",
                    mod_name, lang, mod_name.replace("_", "-"),
                )
            except (AttributeError, TypeError, ValueError) as exc:
                logger.warning("Could not load tree-sitter grammar for %s: %s", lang, exc)

    def supports_language(self, language: str) -> bool:
        return language in self._parsers

    def parse_source(self, source: str, rel_path: str) -> ParsedSource:
        if "python" not in self._parsers:
            raise ExtractionError("No tree-sitter grammar loaded", path=rel_path)
        source_bytes = source.encode("utf-8")
        tree = self._parsers["python"].parse(source_bytes)
        root = tree.root_node
        if root.has_error:
            logger.warning("Tree-sitter reported syntax errors in %s", rel_path)

        nodes: Dict[int, SyntaxNode] = {}
        tokens: List[Token] = []
        cursor = 0

        stack: List[Tuple[Any, Optional[int]]] = [(root, None)]
        while stack:
            ts_node, parent_key = stack.pop()
            key = ts_node.id
            attrs: Dict[str, str] = {}
            projection = TS_PROJECTIONS.get(ts_node.type)
            if projection is not None:
                attrs.update(projection(ts_node))
            field = _ts_field(ts_node)
            if field:
                attrs["field"] = field
            nodes[key] = SyntaxNode(
                key=key,
                kind=ts_node.type,
                parent=parent_key,
                start=ts_node.start_byte,
                attributes=attrs,
            )

            if ts_node.child_count == 0:
                if ts_node.end_byte <= ts_node.start_byte:
                    continue
                owner = key if ts_node.is_named or parent_key is None else parent_key
                text = source_bytes[cursor:ts_node.end_byte].decode("utf-8")
                tokens.append(Token(start=cursor, text=text, node=owner))
                cursor = ts_node.end_byte
                continue

            for child in reversed(ts_node.children):
                stack.append((child, key))

        if cursor < len(source_bytes):
            tokens.append(Token(
                start=cursor,
                text=source_bytes[cursor:].decode("utf-8"),
                node=root.id,
            ))

        nodes[root.id].attributes.update(_root_attributes(rel_path))
        return ParsedSource(path=rel_path, root=root.id, nodes=nodes, tokens=tokens)


# ===================================================================
# AST Fallback Parser (when tree-sitter is not installed)
# ===================================================================

def _ast_definition(declaration: str) -> Projection:
    def project(node: Any) -> Dict[str, str]:
        return {"declares": node.name, "declaration": declaration}
    return project


def _ast_call(node: ast.Call) -> Dict[str, str]:
    if isinstance(node.func, ast.Name):
        return {"invokes": node.func.id}
    if isinstance(node.func, ast.Attribute):
        return {"invokes": node.func.attr}
    return {}


def _ast_import(node: ast.Import) -> Dict[str, str]:
    return {
        "imports": ",".join(alias.name for alias in node.names),
        "binds": ",".join(alias.asname or alias.name.split(".")[0] for alias in node.names),
    }


def _ast_import_from(node: ast.ImportFrom) -> Dict[str, str]:
    attrs = {
        "imports": node.module or "",
        "binds": ",".join(a.asname or a.name for a in node.names if a.name != "*"),
    }
    if node.level:
        attrs["relative_level"] = str(node.level)
    return attrs


AST_PROJECTIONS: Dict[str, Projection] = {
    "FunctionDef": _ast_definition("function"),
    "AsyncFunctionDef": _ast_definition("function"),
    "ClassDef": _ast_definition("class"),
    "Call": _ast_call,
    "Import": _ast_import,
    "ImportFrom": _ast_import_from,
    "Name": lambda node: {"references": node.id},
}

_LAYOUT_TOKENS = {tokenize.INDENT, tokenize.DEDENT, tokenize.NEWLINE, tokenize.NL, tokenize.ENDMARKER}


class _Span:
    __slots__ = ("key", "node", "start", "end", "children")

    def __init__(self, key: int, node: ast.AST, start: int, end: int) -> None:
        self.key = key
        self.node = node
        self.start = start
        self.end = end
        self.children: List["_Span"] = []


class ASTFallbackParser(Parser):
    """Pure-Python fallback using the built-in ``ast`` and ``tokenize`` modules.

    Only supports Python.  Used automatically when tree-sitter is missing.
    Comments are not part of the ``ast``; each one becomes a synthetic
    ``comment`` node under the node that encloses it.
    """

    def supports_language(self, language: str) -> bool:
        return language == "python"

    def parse_source(self, source: str, rel_path: str) -> ParsedSource:
        try:
            tree = ast.parse(source)
        except SyntaxError as exc:
            raise ExtractionError(f"SyntaxError: {exc.msg}", path=rel_path) from exc

        line_starts, lines = _line_index(source)

        def offset(lineno: int, col: int, utf8: bool) -> int:
            line = lines[lineno - 1] if lineno - 1 < len(lines) else ""
            if utf8:
                col = len(line.encode("utf-8")[:col].decode("utf-8", errors="ignore"))
            return line_starts[lineno - 1] + col

        keys = itertools.count(1)
        nodes: Dict[int, SyntaxNode] = {}
        root = _Span(0, tree, 0, len(source))
        nodes[0] = SyntaxNode(key=0, kind="Module", parent=None, start=0,
                              attributes=_root_attributes(rel_path))

        def visit(span: _Span, node: ast.AST) -> None:
            for field_name, value in ast.iter_fields(node):
                children = value if isinstance(value, list) else [value]
                for child in children:
                    if not isinstance(child, ast.AST):
                        continue
                    if getattr(child, "end_lineno", None) is None:
                        visit(span, child)
                        continue
                    key = next(keys)
                    start = offset(child.lineno, child.col_offset, True)
                    decorators = getattr(child, "decorator_list", None)
                    if decorators:
                        # a definition's position starts at ``def``/``class``, not at its first ``@``
                        start = min(start, offset(min(d.lineno for d in decorators), 0, False))
                    child_span = _Span(
                        key, child, start,
                        offset(child.end_lineno, child.end_col_offset, True),
                    )
                    span.children.append(child_span)
                    kind = type(child).__name__
                    attrs: Dict[str, str] = {}
                    projection = AST_PROJECTIONS.get(kind)
                    if projection is not None:
                        attrs.update(projection(child))
                    attrs["field"] = f"{type(span.node).__name__}.{field_name}"
                    nodes[key] = SyntaxNode(key=key, kind=kind, parent=span.key,
                                            start=child_span.start, attributes=attrs)
                    visit(child_span, child)

        visit(root, tree)

        tokens: List[Token] = []
        cursor = 0
        try:
            for tok in tokenize.generate_tokens(io.StringIO(source, newline="").readline):
                if tok.type in _LAYOUT_TOKENS:
                    continue
                start = offset(tok.start[0], tok.start[1], False)
                end = offset(tok.end[0], tok.end[1], False)
                if end <= start or end <= cursor:
                    continue
                owner = _deepest_owner(root, start, end)
                if tok.type == tokenize.COMMENT:
                    key = next(keys)
                    nodes[key] = SyntaxNode(key=key, kind="comment", parent=owner.key, start=start)
                    owner_key = key
                else:
                    owner_key = owner.key
                tokens.append(Token(start=cursor, text=source[cursor:end], node=owner_key))
                cursor = end
        except (tokenize.TokenError, IndentationError) as exc:
            raise ExtractionError(f"Unable to tokenize: {exc}", path=rel_path) from exc

        if cursor < len(source):
            tokens.append(Token(start=cursor, text=source[cursor:], node=0))

        return ParsedSource(path=rel_path, root=0, nodes=nodes, tokens=tokens)


def _line_index(source: str) -> Tuple[List[int], List[str]]:
    lines = io.StringIO(source, newline="").readlines() or [""]
    starts: List[int] = []
    position = 0
    for line in lines:
        starts.append(position)
        position += len(line)
    starts.append(position)
    return starts, lines


def _deepest_owner(root: _Span, start: int, end: int) -> _Span:
    current = root
    while True:
        for child in current.children:
            if child.start <= start and end <= child.end:
                current = child
                break
        else:
            return current


# ===================================================================
# Auto-selecting parser
# ===================================================================

class SourceParser(Parser):
    """Selects **TreeSitterParser** when tree-sitter is available, otherwise
    falls back to the built-in AST parser.
    """

    def __init__(self) -> None:
        ts = TreeSitterParser(languages=["python"])
        if ts.supports_language("python"):
            self._delegate: Parser = ts
            logger.info("Using Tree-sitter parser")
        else:
            self._delegate = ASTFallbackParser()
            logger.info("Using AST fallback parser (Python only)")

    @property
    def backend(self) -> str:
        return type(self._delegate).__name__

    def parse_source(self, source: str, rel_path: str) -> ParsedSource:
        return self._delegate.parse_source(source, rel_path)

    def supports_language(self, language: str) -> bool:
        return self._delegate.supports_language(language)
