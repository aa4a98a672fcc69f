# emplode_runtime.py

import inspect
import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence, Union

from emplode.emplode_datatypes import (
    Symbol, SymbolVector, EmplodeType, EmplodeError, ArityError, make_temp,
)
from emplode.emplode_function import SymbolFunction, wrap_member_function
from emplode.emplode_scope import Scope
from emplode.emplode_printer import Printer, render_template
from emplode.emplode_reader import load_config
from emplode import emplode_serialize


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


def emplode_api_method(func):
    """A decorator to mark methods of an EmplodeType as member functions."""
    func._is_emplode_api = True
    return func


class MemberFunction(NamedTuple):
    name: str
    fun: Callable[..., Any]
    desc: str
    target: Callable[[EmplodeType, SymbolVector], Symbol]


class TypeInfo:
    """A capability type: an EmplodeType subclass plus the member functions scripts may call on it."""

    def __init__(self, name: str, class_type: type, desc: str = "",
                 on_arity_error: Optional[Callable[[str], None]] = None):
        if not (isinstance(class_type, type) and issubclass(class_type, EmplodeType)):
            raise TypeError(f"Type '{name}' must be backed by an EmplodeType subclass.")
        self.name = name
        self.class_type = class_type
        self.desc = desc
        self.member_functions: List[MemberFunction] = []
        self._on_arity_error = on_arity_error
        self._bind_api_methods()

    def add_member_function(self, name: str, fun: Callable[..., Any], desc: str = "") -> MemberFunction:
        if any(m.name == name for m in self.member_functions):
            raise EmplodeError(f"Type '{self.name}' already has a member function '{name}'.")
        target = wrap_member_function(self.class_type, name, fun, self._on_arity_error)
        member = MemberFunction(name, fun, desc, target)
        self.member_functions.append(member)
        return member

    def _bind_api_methods(self):
        """Register the @emplode_api_method methods of the class under their own names."""
        for name, member in inspect.getmembers(self.class_type, inspect.isfunction):
            if getattr(member, "_is_emplode_api", False):
                self.add_member_function(name, member, inspect.getdoc(member) or "")

    def __repr__(self) -> str:
        return f"<TypeInfo {self.name!r} class={self.class_type.__name__} members={len(self.member_functions)}>"


class Environment:
    """Owns the root scope of a configuration along with its error channel and types."""

    def __init__(self, name: str = "", desc: str = "", *, strict_arity: Optional[bool] = None,
                 comment_column: int = 40, echo_errors: bool = True):
        if strict_arity is None:
            strict_arity = _env_flag("EMPLODE_STRICT_ARITY")
        self.comment_column = comment_column
        self.echo_errors = echo_errors
        self.side_effects: List[Dict[str, Any]] = []
        self.types: Dict[str, TypeInfo] = {}

        self.root = Scope(name, desc)
        self.root.error_sink = self._emit_error
        self.root.strict_arity = strict_arity
        self._add_builtins()

    @property
    def strict_arity(self) -> bool:
        return self.root.strict_arity

    @strict_arity.setter
    def strict_arity(self, value: bool):
        self.root.strict_arity = value

    # --- Error channel ---

    def _dbg(self, *parts):
        if os.environ.get("EMPLODE_DEBUG"):
            print("[DBG]", *parts, file=sys.stderr)

    def _emit_error(self, message: str):
        self.side_effects.append({'topics': ['stderr'], 'message': message})
        if self.echo_errors:
            print(message, file=sys.stderr)

    def _on_arity_error(self, message: str):
        if self.strict_arity:
            raise ArityError(message)
        self._emit_error(message)

    @property
    def errors(self) -> List[str]:
        return [e['message'] for e in self.side_effects if e.get('topics') == ['stderr']]

    @property
    def output(self) -> List[str]:
        return [e['message'] for e in self.side_effects if e.get('topics') == ['stdout']]

    # --- Built-ins ---

    def _add_builtins(self):
        root = self.root

        def print_(args: SymbolVector) -> str:
            message = " ".join(arg.as_string() for arg in args)
            self.side_effects.append({'topics': ['stdout'], 'message': message})
            return message

        def exists(name: str) -> bool:
            return root.lookup_entry(name) is not None

        root.add_builtin_function("print", print_, "Record the arguments as a line of output.")
        root.add_builtin_function("exists", exists, "Is the given name defined?")

    # --- Registration ---

    def add_type(self, name: str, class_type: type, desc: str = "") -> TypeInfo:
        if name in self.types:
            raise EmplodeError(f"Type '{name}' is already registered.")
        info = TypeInfo(name, class_type, desc, self._on_arity_error)
        self.types[name] = info
        self._dbg("TYPE", name, class_type.__name__, [m.name for m in info.member_functions])
        return info

    def get_type(self, class_type: type) -> Optional[TypeInfo]:
        """The most specific registered type that class_type belongs to."""
        for klass in class_type.__mro__:
            for info in self.types.values():
                if info.class_type is klass:
                    return info
        return None

    def add_object(self, name: str, obj: EmplodeType, desc: str = "", *,
                   type_name: Optional[str] = None, scope: Optional[Scope] = None) -> Scope:
        """Declare a typed instance scope for a host object."""
        if type_name is not None:
            info = self.types.get(type_name)
        else:
            info = self.get_type(type(obj))
        if info is None:
            raise EmplodeError(f"No registered type for object '{name}' ({type(obj).__name__}).")
        target = scope if scope is not None else self.root
        self._dbg("OBJECT", name, info.name)
        return target.add_object(name, obj, info, desc)

    # --- Evaluation helpers ---

    def lookup_entry(self, name: str, scan_outer: bool = True) -> Optional[Symbol]:
        return self.root.lookup_entry(name, scan_outer)

    def make_temp(self, value: Any) -> Symbol:
        return make_temp(value)

    def invoke(self, function: Union[str, Symbol], args: Sequence[Any] = (), *,
               scope: Optional[Scope] = None) -> Symbol:
        """Invoke a function symbol (or the function visible under a name).

        Plain Python values in args are wrapped as temporaries first.
        """
        if isinstance(function, str):
            found = (scope or self.root).lookup_entry(function)
            if found is None:
                raise EmplodeError(f"Unknown function '{function}'.")
            function = found
        if not isinstance(function, SymbolFunction):
            raise EmplodeError(f"'{function.name}' is not a function.")
        arg_symbols = [a if isinstance(a, Symbol) else make_temp(a) for a in args]
        self._dbg("INVOKE", function.name, arg_symbols)
        return function.invoke(arg_symbols)

    # --- Text and data I/O ---

    def load(self, text: str) -> Scope:
        return load_config(self.root, text)

    def load_file(self, path: Union[str, Path]) -> Scope:
        p = Path(path)
        source = p.read_text(encoding="utf-8")
        if p.suffix.lower() in (".json", ".yaml", ".yml"):
            data = emplode_serialize.deserialize(source, fmt=emplode_serialize.detect_format(source, p.name))
            return emplode_serialize.apply_mapping(self.root, data)
        return self.load(source)

    def write(self, stream=None) -> str:
        text = Printer(comment_column=self.comment_column).pformat_contents(self.root)
        if stream is not None:
            stream.write(text)
        return text

    def dump(self, fmt: str = "yaml") -> str:
        return emplode_serialize.serialize(self.root, fmt=fmt)

    def apply(self, data: Dict[str, Any]) -> Scope:
        return emplode_serialize.apply_mapping(self.root, data)

    def render(self, template: str, scope: Optional[Scope] = None) -> str:
        return render_template(scope or self.root, template)

    def update_default(self):
        self.root.update_default()
