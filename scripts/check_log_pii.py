#!/usr/bin/env python3
"""Log PII gate for src/.

Fails if:
- print() is called in runtime code
- a logger call references a message body, contact address or raw payload
  outside safe_log_context()/redact_value()/redact_string()/hash_identifier()

Usage:
    python scripts/check_log_pii.py [paths...]
"""

from __future__ import annotations

import ast
import sys
from pathlib import Path

SENSITIVE_NAMES = frozenset(
    {
        "body",
        "caption",
        "content",
        "jid",
        "message_text",
        "payload",
        "phone",
        "raw_body",
        "remote_jid",
        "text",
        "to",
    }
)

LOG_METHODS = frozenset({"debug", "info", "warning", "error", "critical", "exception"})

# Calls whose arguments are already safe to log
REDACTORS = frozenset({"safe_log_context", "redact_value", "redact_string", "hash_identifier"})


def _call_name(node: ast.Call) -> str | None:
    func = node.func
    if isinstance(func, ast.Name):
        return func.id
    if isinstance(func, ast.Attribute):
        return func.attr
    return None


def _is_logger_call(node: ast.Call) -> bool:
    func = node.func
    return (
        isinstance(func, ast.Attribute)
        and func.attr in LOG_METHODS
        and isinstance(func.value, ast.Name)
        and func.value.id in ("logger", "log")
    )


def _sensitive_refs(node: ast.AST) -> list[str]:
    """Sensitive identifiers under node, skipping redactor subtrees."""
    if isinstance(node, ast.Call) and _call_name(node) in REDACTORS:
        return []
    found = []
    if isinstance(node, ast.Name) and node.id in SENSITIVE_NAMES:
        found.append(node.id)
    elif isinstance(node, ast.Attribute) and node.attr in SENSITIVE_NAMES:
        found.append(node.attr)
    for child in ast.iter_child_nodes(node):
        found.extend(_sensitive_refs(child))
    return found


def check_source(source: str, filename: str = "<string>") -> list[str]:
    """Return violations found in one module's source."""
    errors = []
    tree = ast.parse(source, filename=filename)
    for node in ast.walk(tree):
        if not isinstance(node, ast.Call):
            continue
        if isinstance(node.func, ast.Name) and node.func.id == "print":
            errors.append(f"{filename}:{node.lineno}: print() not allowed in runtime code")
            continue
        if not _is_logger_call(node):
            continue
        args = [*node.args, *(kw.value for kw in node.keywords)]
        refs = sorted({ref for arg in args for ref in _sensitive_refs(arg)})
        for ref in refs:
            errors.append(
                f"{filename}:{node.lineno}: logger call references '{ref}' "
                "without safe_log_context/redact_value"
            )
    return errors


def main(argv: list[str] | None = None) -> int:
    paths = [Path(p) for p in (argv if argv is not None else sys.argv[1:])]
    if not paths:
        paths = [Path(__file__).resolve().parent.parent / "src"]

    all_errors: list[str] = []
    for root in paths:
        files = [root] if root.is_file() else sorted(root.rglob("*.py"))
        for pyfile in files:
            all_errors.extend(check_source(pyfile.read_text(encoding="utf-8"), str(pyfile)))

    if all_errors:
        sys.stderr.write("Log PII gate FAILED:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("Log PII gate passed\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
