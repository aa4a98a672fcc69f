"""
Reads config text in the form that Scope.write() produces and applies it to an
already-registered scope tree.

Accepted statements:

    name = 3.5;                 assignment from a literal
    name = other.name;          assignment from another symbol (copy_value)
    name = f(1, "a", x);        assignment from a function result
    name = { ... }              assignments inside a nested scope
    Value x = 2;  String s;     declarations of new scope-local variables
    f(1, 2);                    function call for its side effects

Text is parsed with koine against emplode_grammar.yaml; ConfigTransformer then
walks the resulting AST and applies each statement to the scope tree.
Literals and call results are temporary symbols; they only live for the
statement that created them.
"""
import json
from pathlib import Path
from typing import Any, List, Optional

from koine import Parser

from emplode.emplode_datatypes import Symbol, EmplodeError, make_temp
from emplode.emplode_scope import Scope

GRAMMAR_PATH = Path(__file__).parent / "emplode_grammar.yaml"

# Wrapper nodes whose children stand in for them.
_TRANSPARENT = frozenset({"statement", "initializer", "expression", "arguments", "more_arguments"})
_NON_FINITE = frozenset({"inf", "-inf", "nan", "-nan"})


class ConfigError(EmplodeError, ValueError):
    """A problem in config text, with the location it was found at."""

    def __init__(self, message: str, line: Optional[int] = None, col: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.line = line
        self.col = col

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        col_info = f", col {self.col}" if self.col is not None else ""
        return f"Error on line {self.line}{col_info}: {self.message}"


# =================================================================
# Parsing
# =================================================================

_parser: Optional[Parser] = None


def _get_parser() -> Parser:
    global _parser
    if _parser is None:
        _parser = Parser.from_file(str(GRAMMAR_PATH))
    return _parser


def _parse_error(parse_out: dict) -> ConfigError:
    node = parse_out.get('error_node') or {}
    message = parse_out.get('error_message') or parse_out.get('message') or str(parse_out)
    return ConfigError(message, node.get('line'), node.get('col'))


def parse_config(text: str) -> Any:
    """Parse config text into koine's AST (a 'config' node of statements)."""
    try:
        parse_out = _get_parser().parse(text)
    except Exception as e:
        raise ConfigError(f"Parse failed: {e}") from e

    if isinstance(parse_out, dict) and 'status' in parse_out:
        if parse_out.get('status') != 'success':
            raise _parse_error(parse_out)
        ast = parse_out.get('ast')
    else:
        ast = parse_out
    # Promoted sequences can come back wrapped in a single-item list.
    if isinstance(ast, list) and len(ast) == 1:
        ast = ast[0]
    return ast


def _children(node: Any) -> List[dict]:
    """The meaningful child nodes, with lists and wrapper nodes flattened away."""
    if isinstance(node, dict) and node.get('tag') not in _TRANSPARENT and 'tag' in node:
        node = node.get('children', [])
    out: List[dict] = []
    for child in node if isinstance(node, list) else [node]:
        if isinstance(child, list):
            out.extend(_children(child))
        elif isinstance(child, dict):
            if 'tag' not in child:
                out.extend(_children(list(child.values())))
            elif child['tag'] in _TRANSPARENT:
                out.extend(_children(child.get('children', [])))
            else:
                out.append(child)
    return out


def parse_number(text: str):
    """Integer literals stay exact ints; everything else is a float."""
    if text in _NON_FINITE or '.' in text or 'e' in text or 'E' in text:
        return float(text)
    return int(text)


# =================================================================
# Applying the AST
# =================================================================

class ConfigTransformer:
    """Applies a parsed config AST to a scope tree, statement by statement."""

    def _error(self, message: str, node: Optional[dict]) -> ConfigError:
        node = node or {}
        return ConfigError(message, node.get('line'), node.get('col'))

    def apply(self, ast: Any, scope: Scope) -> Scope:
        for statement in _children(ast):
            self._statement(statement, scope)
        return scope

    def _statement(self, node: dict, scope: Scope):
        parts = _children(node)
        match node.get('tag'):
            case 'assignment':
                target_node, value_node = parts
                target = self._resolve(target_node, scope)
                self._assign(target, target_node, self._expression(value_node, scope), value_node)
            case 'scope':
                name_node, *body = parts
                target = self._resolve(name_node, scope)
                if not target.is_scope:
                    raise self._error(f"'{name_node['text']}' is not a scope", name_node)
                for statement in body:
                    self._statement(statement, target.as_scope())
            case 'declaration':
                self._declaration(parts, scope)
            case 'call_statement':
                self._expression(parts[0], scope)
            case tag:
                raise self._error(f"Unexpected '{tag}' statement", node)

    def _declaration(self, parts: List[dict], scope: Scope):
        type_node, name_node, *init = parts
        name = name_node['text']
        if "." in name:
            raise self._error(f"Cannot declare dotted name '{name}'", name_node)
        if scope.get_entry(name) is not None:
            raise self._error(f"'{name}' is already declared in this scope", name_node)
        if type_node['text'] == "String":
            symbol = scope.add_string_var(name)
        else:
            symbol = scope.add_value_var(name)
        if init:
            self._assign(symbol, name_node, self._expression(init[0], scope), init[0])

    def _assign(self, target: Symbol, target_node: dict, value: Symbol, source_node: dict):
        try:
            copied = target.copy_value(value)
        except EmplodeError as e:
            raise self._error(str(e), source_node) from e
        if not copied:
            raise self._error(f"Cannot assign a value to '{target_node['text']}'", target_node)

    def _expression(self, node: dict, scope: Scope) -> Symbol:
        match node.get('tag'):
            case 'number':
                return make_temp(parse_number(node['text']))
            case 'string':
                return make_temp(json.loads(node['text']))
            case 'name':
                return self._resolve(node, scope)
            case 'call':
                name_node, *arg_nodes = _children(node)
                function = self._resolve(name_node, scope)
                if not function.is_function:
                    raise self._error(f"'{name_node['text']}' is not a function", name_node)
                return function.invoke([self._expression(arg, scope) for arg in arg_nodes])
            case tag:
                raise self._error(f"Unexpected '{tag}' in expression", node)

    def _resolve(self, node: dict, scope: Scope) -> Symbol:
        text = node['text']
        head, *rest = text.split(".")
        symbol = scope.lookup_entry(head)
        for part in rest:
            if symbol is None or not symbol.is_scope:
                break
            symbol = symbol.as_scope().get_entry(part)
        if symbol is None:
            raise self._error(f"Unknown name '{text}'", node)
        return symbol


def load_config(scope: Scope, text: str) -> Scope:
    """Apply config text to scope; raises ConfigError on malformed input."""
    return ConfigTransformer().apply(parse_config(text), scope)
