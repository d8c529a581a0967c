"""Split source files into semantic units.

Dispatch by extension:
  .js .jsx .ts .tsx .mjs .cjs  → function / arrow_function / component / class / method
  .py                          → function / class / method (via ast)
  .md .mdx                     → section (``#`` to ``###`` headers)
  .css .scss .less             → css_rule
  anything else                → whole file only

Every parsed file also yields one ``file`` unit spanning the whole file, so a
file stays retrievable even when finer extraction finds nothing.

JavaScript and TypeScript are parsed with tree-sitter. Declarations whose
subtree contains a syntax error are dropped; the file unit still covers them.
"""

from __future__ import annotations

import ast
import logging
import os
import re
from pathlib import Path, PurePosixPath

from tree_sitter import Node
from tree_sitter_language_pack import get_parser

from codeground.db.models import CodeUnit
from codeground.errors import ParseFailure
from codeground.ingest.filters import SKIP_DIRECTORIES, file_priority, should_include

logger = logging.getLogger(__name__)

MAX_FILE_CHARS = 1_000_000
_NON_ASCII_LIMIT = 0.30

TYPE_BONUS: dict[str, float] = {
    "component": 3.0,
    "class": 2.5,
    "function": 2.0,
    "arrow_function": 2.0,
    "method": 1.5,
    "section": 1.0,
    "file": 0.5,
}

_JS_GRAMMARS: dict[str, str] = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
}
_MD_EXTS = {".md", ".mdx"}
_CSS_EXTS = {".css", ".scss", ".less"}

_MD_HEADER_RE = re.compile(r"^(#{1,3})\s+(.+?)\s*#*\s*$")
_MD_FENCE_RE = re.compile(r"^\s*(```|~~~)")
_CSS_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_CSS_RULE_RE = re.compile(r"([^{}@;/]+?)\s*\{([^{}]*)\}")


class UnitParser:
    """Parse files, or a whole repository checkout, into CodeUnits."""

    def __init__(self, max_file_chars: int = MAX_FILE_CHARS) -> None:
        self.max_file_chars = max_file_chars

    # ------------------------------------------------------------------
    # Single file
    # ------------------------------------------------------------------

    def parse(self, path: Path | str, root: Path | str | None = None) -> list[CodeUnit]:
        """Return the units of one file; empty for binary or oversized files.

        Args:
            path: File to parse.
            root: Repository root; unit paths are made relative to it.

        Raises:
            ParseFailure: If the file cannot be read.
        """
        path = Path(path)
        rel = path.relative_to(root).as_posix() if root is not None else path.as_posix()

        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise ParseFailure(rel, exc.strerror or str(exc)) from None

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("Skipping %s: not UTF-8 text", rel)
            return []

        if is_binary(text):
            logger.debug("Skipping %s: binary content", rel)
            return []
        if len(text) > self.max_file_chars:
            logger.info("Skipping %s: %d chars exceeds %d", rel, len(text), self.max_file_chars)
            return []

        return self.parse_text(text, rel)

    def parse_text(self, text: str, rel_path: str) -> list[CodeUnit]:
        """Extract units from *text* as if it were the file at *rel_path*."""
        ext = PurePosixPath(rel_path).suffix.lower()
        if ext in _JS_GRAMMARS:
            units = _extract_js(text, rel_path)
        elif ext == ".py":
            units = _extract_python(text, rel_path)
        elif ext in _MD_EXTS:
            units = _extract_markdown(text, rel_path)
        elif ext in _CSS_EXTS:
            units = _extract_css(text, rel_path)
        else:
            units = []

        units.append(
            CodeUnit(
                type="file",
                name=PurePosixPath(rel_path).name,
                content=text,
                path=rel_path,
                start_line=1,
                end_line=text.count("\n") + 1,
            )
        )

        base = file_priority(rel_path)
        for unit in units:
            unit.importance = unit_importance(unit, base)
        return units

    # ------------------------------------------------------------------
    # Repository
    # ------------------------------------------------------------------

    def list_files(self, root: Path | str) -> list[str]:
        """Repository-relative paths worth parsing, highest priority first."""
        root = Path(root)
        found: list[str] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(
                d for d in dirnames if not d.startswith(".") and d not in SKIP_DIRECTORIES
            )
            for filename in filenames:
                if filename.startswith("."):
                    continue
                full = Path(dirpath) / filename
                if full.is_symlink():
                    continue
                rel = full.relative_to(root).as_posix()
                if should_include(rel):
                    found.append(rel)
        found.sort(key=lambda rel: (-file_priority(rel), rel))
        return found

    def parse_repository(self, root: Path | str) -> list[CodeUnit]:
        """Parse every included file under *root*; unreadable files are skipped."""
        root = Path(root)
        files = self.list_files(root)
        units: list[CodeUnit] = []
        skipped = 0
        for rel in files:
            try:
                units.extend(self.parse(root / rel, root=root))
            except ParseFailure as exc:
                skipped += 1
                logger.warning("%s", exc)
        logger.info(
            "Parsed %d units from %d files in %s (%d skipped)",
            len(units), len(files), root, skipped,
        )
        return units


# ---------------------------------------------------------------------------
# Heuristics
# ---------------------------------------------------------------------------


def is_binary(text: str) -> bool:
    """Null bytes, or more than 30% non-ASCII characters."""
    if "\0" in text:
        return True
    if not text:
        return False
    non_ascii = sum(1 for ch in text if ord(ch) > 0x7F)
    return non_ascii > len(text) * _NON_ASCII_LIMIT


def unit_importance(unit: CodeUnit, base_priority: float = 1.0) -> float:
    """File priority + type bonus + content signals."""
    score = base_priority + TYPE_BONUS.get(unit.type, 0.0)
    content = unit.content
    if content:
        if "export default" in content or "module.exports" in content:
            score += 1.5
        elif "export " in content:
            score += 1.0

        if unit.type in ("function", "arrow_function") and "return (" in content and "<" in content:
            score += 1.0

        lines = content.count("\n") + 1
        if 5 <= lines <= 50:
            score += 0.5
        elif lines > 100:
            score -= 0.5
    return score


# ---------------------------------------------------------------------------
# JavaScript / TypeScript
# ---------------------------------------------------------------------------


_FUNCTION_VALUES = frozenset({"function_expression", "function", "generator_function"})


def _extract_js(text: str, rel_path: str) -> list[CodeUnit]:
    source = text.encode("utf-8")
    grammar = _JS_GRAMMARS[PurePosixPath(rel_path).suffix.lower()]
    tree = get_parser(grammar).parse(source)

    units: list[CodeUnit] = []
    stack = [tree.root_node]
    while stack:
        node = stack.pop()
        stack.extend(reversed(node.named_children))
        found = _js_declaration(node, source)
        if found is None:
            continue
        unit_type, name, span = found
        if span.has_error:
            logger.debug("Dropping %s in %s: syntax error", name, rel_path)
            continue
        content = _node_text(source, span)
        start_line = span.start_point[0] + 1
        units.append(
            CodeUnit(
                type=unit_type,
                name=name,
                content=content,
                path=rel_path,
                start_line=start_line,
                end_line=start_line + content.count("\n"),
            )
        )
    return units


def _js_declaration(node: Node, source: bytes) -> tuple[str, str, Node] | None:
    """(unit type, name, node spanning the declaration) for a declaration node."""
    kind = node.type
    span = node
    if kind in ("function_declaration", "generator_function_declaration"):
        unit_type, name = "function", _field_text(node, "name", source)
    elif kind in ("class_declaration", "abstract_class_declaration"):
        unit_type, name = "class", _field_text(node, "name", source)
    elif kind == "method_definition":
        unit_type, name = "method", _field_text(node, "name", source)
        owner = _enclosing_class(node, source)
        if name and owner:
            name = f"{owner}.{name}"
    elif kind in ("field_definition", "public_field_definition"):
        value = node.child_by_field_name("value")
        if value is None or value.type != "arrow_function":
            return None
        unit_type = "method"
        name = _field_text(node, "name", source) or _field_text(node, "property", source)
        owner = _enclosing_class(node, source)
        if name and owner:
            name = f"{owner}.{name}"
    elif kind == "pair":
        value = node.child_by_field_name("value")
        if value is None or value.type not in _FUNCTION_VALUES:
            return None
        unit_type, name = "method", _field_text(node, "key", source)
    elif kind == "variable_declarator":
        value = node.child_by_field_name("value")
        if value is None or value.type != "arrow_function":
            return None
        unit_type, name = "arrow_function", _field_text(node, "name", source)
        if node.parent is not None and node.parent.type in ("lexical_declaration", "variable_declaration"):
            span = node.parent
    else:
        return None

    if not name:
        return None
    if unit_type in ("function", "arrow_function") and name[0].isupper():
        unit_type = "component"
    if span.parent is not None and span.parent.type == "export_statement":
        span = span.parent
    return unit_type, name, span


def _enclosing_class(node: Node, source: bytes) -> str | None:
    body = node.parent
    if body is None or body.type != "class_body" or body.parent is None:
        return None
    return _field_text(body.parent, "name", source)


def _field_text(node: Node, field: str, source: bytes) -> str | None:
    child = node.child_by_field_name(field)
    if child is None:
        return None
    return _node_text(source, child).strip("'\"`[]") or None


def _node_text(source: bytes, node: Node) -> str:
    return source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")


# ---------------------------------------------------------------------------
# Python
# ---------------------------------------------------------------------------


def _extract_python(text: str, rel_path: str) -> list[CodeUnit]:
    try:
        tree = ast.parse(text)
    except (SyntaxError, ValueError) as exc:
        logger.debug("No Python units for %s: %s", rel_path, exc)
        return []

    lines = text.split("\n")
    units: list[CodeUnit] = []

    def _unit(node: ast.AST, unit_type: str, name: str) -> CodeUnit:
        decorators = getattr(node, "decorator_list", [])
        start = min([node.lineno, *(d.lineno for d in decorators)])
        end = node.end_lineno or node.lineno
        return CodeUnit(
            type=unit_type,
            name=name,
            content="\n".join(lines[start - 1 : end]),
            path=rel_path,
            start_line=start,
            end_line=end,
        )

    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            units.append(_unit(node, "function", node.name))
        elif isinstance(node, ast.ClassDef):
            units.append(_unit(node, "class", node.name))
            for child in node.body:
                if isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef)):
                    units.append(_unit(child, "method", f"{node.name}.{child.name}"))
    return units


# ---------------------------------------------------------------------------
# Markdown
# ---------------------------------------------------------------------------


def _extract_markdown(text: str, rel_path: str) -> list[CodeUnit]:
    lines = text.split("\n")
    headers: list[tuple[int, str]] = []  # (0-based line index, title)
    in_fence = False
    for idx, line in enumerate(lines):
        if _MD_FENCE_RE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = _MD_HEADER_RE.match(line)
        if match:
            headers.append((idx, match.group(2)))

    units: list[CodeUnit] = []
    for pos, (idx, title) in enumerate(headers):
        end_idx = headers[pos + 1][0] - 1 if pos + 1 < len(headers) else len(lines) - 1
        while end_idx > idx and not lines[end_idx].strip():
            end_idx -= 1
        units.append(
            CodeUnit(
                type="section",
                name=title,
                content="\n".join(lines[idx : end_idx + 1]),
                path=rel_path,
                start_line=idx + 1,
                end_line=end_idx + 1,
            )
        )
    return units


# ---------------------------------------------------------------------------
# CSS
# ---------------------------------------------------------------------------


def _extract_css(text: str, rel_path: str) -> list[CodeUnit]:
    # Blank out comments, keeping offsets and newlines intact.
    cleaned = _CSS_COMMENT_RE.sub(lambda m: re.sub(r"[^\n]", " ", m.group()), text)
    units: list[CodeUnit] = []
    for match in _CSS_RULE_RE.finditer(cleaned):
        selector = " ".join(match.group(1).split())
        if not selector:
            continue
        start = match.start(1) + (len(match.group(1)) - len(match.group(1).lstrip()))
        content = text[start : match.end()]
        start_line = text.count("\n", 0, start) + 1
        units.append(
            CodeUnit(
                type="css_rule",
                name=selector,
                content=content,
                path=rel_path,
                start_line=start_line,
                end_line=start_line + content.count("\n"),
            )
        )
    return units
