"""
Formats symbols and scopes as canonical config text, and renders Mustache
templates against a scope chain.
"""
import json
from typing import Any, Dict

import pystache

from emplode.emplode_datatypes import Symbol, SymbolVar, SymbolLinked, SymbolFunctions
from emplode.emplode_function import SymbolFunction
from emplode.emplode_scope import Scope


class Printer:
    """Formats symbols into config text that the reader accepts back."""

    def __init__(self, indent_width: int = 2, comment_column: int = 40):
        self._indent_char = " " * indent_width
        self.comment_column = comment_column
        self._handlers = self._create_handlers()

    def pformat(self, symbol: Symbol, prefix: str = "") -> str:
        """Public entry point to format one symbol (and, for scopes, its contents)."""
        return self._get_handler(symbol)(symbol, prefix)

    def pformat_contents(self, scope: Scope, prefix: str = "") -> str:
        return "".join(self.pformat(entry, prefix) for entry in scope.entries)

    def _get_handler(self, symbol):
        handler = self._handlers.get(type(symbol))
        if handler is not None:
            return handler
        # Subclasses fall back to the closest registered base.
        for base, handler in self._handlers.items():
            if isinstance(symbol, base):
                return handler
        return self._pformat_entry

    def _create_handlers(self):
        return {
            Scope: self._pformat_scope,
            SymbolFunction: self._pformat_function,
            SymbolVar: self._pformat_entry,
            SymbolLinked: self._pformat_entry,
            SymbolFunctions: self._pformat_entry,
        }

    def _with_comment(self, line: str, desc: str) -> str:
        if not desc:
            return line
        padded = line.ljust(self.comment_column)
        if len(padded) == len(line):
            padded += " "
        return f"{padded}// {desc}"

    def format_literal(self, symbol: Symbol) -> str:
        """The value part of an assignment, quoted for string kinds."""
        if symbol.default_val:
            return symbol.default_val
        if symbol.is_string:
            return json.dumps(symbol.as_string(), ensure_ascii=False)
        return symbol.as_string()

    def _pformat_entry(self, symbol: Symbol, prefix: str) -> str:
        line = f"{prefix}{symbol.name} = {self.format_literal(symbol)};"
        return self._with_comment(line, symbol.desc) + "\n"

    def _pformat_function(self, symbol: SymbolFunction, prefix: str) -> str:
        # Functions are provided by the host; there is nothing to re-emit.
        return ""

    def _pformat_scope(self, scope: Scope, prefix: str) -> str:
        head = self._with_comment(f"{prefix}{scope.name} = {{ ", scope.desc).rstrip() + "\n"
        body = self.pformat_contents(scope, prefix + self._indent_char)
        return f"{head}{body}{prefix}}}\n"


# =================================================================
# Templates
# =================================================================

def _tmpl_normalize_value(symbol: Symbol) -> Any:
    """Convert a symbol into plain Python data for Mustache."""
    if isinstance(symbol, Scope):
        return {entry.name: _tmpl_normalize_value(entry)
                for entry in symbol.entries + symbol.builtins
                if not entry.is_function}
    return symbol.value


def _scope_to_dict(scope: Scope) -> Dict[str, Any]:
    """Flatten a scope and its enclosing scopes into a single plain dict."""
    chain = []
    cur = scope
    while cur is not None:
        chain.append(cur)
        cur = cur.scope
    out: Dict[str, Any] = {}
    # Populate from the root inward so inner names shadow outer ones.
    for s in reversed(chain):
        out.update(_tmpl_normalize_value(s))
    return out


def render_template(scope: Scope, template: str) -> str:
    """Render a Mustache template using every name visible from scope."""
    return pystache.render(template, _scope_to_dict(scope))
