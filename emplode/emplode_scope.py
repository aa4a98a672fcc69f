"""
Scopes: symbols that own an ordered table of child symbols.

A Scope keeps declared entries (written back out as config text, in
declaration order) apart from built-in entries (available to lookup but never
written). Both feed one name map, and a name may only be declared once per
Scope.
"""
import functools
import sys
from typing import Any, Callable, Dict, Iterator, List, Optional

from emplode.emplode_datatypes import (
    Symbol, SymbolVar, SymbolLinked, SymbolFunctions, Format, EmplodeType,
    CoercionError, DuplicateSymbolError, EmplodeError, format_for_value,
)
from emplode.emplode_function import SymbolFunction


class Scope(Symbol):
    """A named table of symbols, nested lexically inside its parent Scope.

    Lookup walks outward through enclosing scopes, so inner declarations
    shadow outer ones. The parent link is weak: a Scope owns its children,
    never the other way around.
    """

    def __init__(self, name: str, desc: str = "", scope: Optional['Scope'] = None, type_name: str = ""):
        super().__init__(name, desc, scope, Format.SCOPE)
        self.type_name = type_name
        self._entries: List[Symbol] = []
        self._builtins: List[Symbol] = []
        self._entry_map: Dict[str, Symbol] = {}
        # Bound capability object for typed instances (see add_object).
        self.host_object: Optional[EmplodeType] = None
        # Only set on a root scope by its Environment.
        self.error_sink: Optional[Callable[[str], None]] = None
        self.strict_arity = False

    @property
    def is_scope(self) -> bool:
        return True

    def as_scope(self) -> 'Scope':
        return self

    @property
    def value(self) -> 'Scope':
        return self

    @property
    def root(self) -> 'Scope':
        cur = self
        while cur.scope is not None:
            cur = cur.scope
        return cur

    # --- Table access ---

    @property
    def entries(self) -> List[Symbol]:
        """Declared entries in declaration order."""
        return list(self._entries)

    @property
    def builtins(self) -> List[Symbol]:
        return list(self._builtins)

    def __iter__(self) -> Iterator[Symbol]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    # Membership and keys() cover built-ins too; iteration and len() do not.
    def __contains__(self, name: Any) -> bool:
        return isinstance(name, str) and name in self._entry_map

    def __getitem__(self, name: str) -> Symbol:
        try:
            return self._entry_map[name]
        except KeyError:
            raise KeyError(f"'{name}'") from None

    def keys(self):
        return self._entry_map.keys()

    def get_entry(self, name: str) -> Optional[Symbol]:
        """Look up a name in this scope only."""
        return self._entry_map.get(name)

    def lookup_entry(self, name: str, scan_outer: bool = True) -> Optional[Symbol]:
        """Find a symbol by name, scanning enclosing scopes when scan_outer is set."""
        found = self._entry_map.get(name)
        if found is not None:
            return found
        parent = self.scope
        if parent is None or not scan_outer:
            return None
        return parent.lookup_entry(name)

    def get(self, name: str, default: Any = None) -> Any:
        """The natural value of a (possibly outer) symbol, or default."""
        found = self.lookup_entry(name)
        if found is None:
            return default
        return found.value

    # --- Declaration ---

    def _claim(self, symbol: Symbol):
        if symbol.is_temporary:
            raise EmplodeError(f"Temporary symbols cannot be declared in scope '{self.name}'.")
        # Written names have to read back as a single config name.
        if not (symbol.name.isidentifier() and symbol.name.isascii()):
            raise EmplodeError(f"Invalid symbol name {symbol.name!r} in scope '{self.name}'.")
        if symbol.name in self._entry_map:
            raise DuplicateSymbolError(symbol.name, self.name)
        symbol._set_scope(self)
        self._entry_map[symbol.name] = symbol

    def add(self, symbol: Symbol) -> Symbol:
        """Append an already-built symbol to the declared entries."""
        self._claim(symbol)
        self._entries.append(symbol)
        return symbol

    def add_builtin(self, symbol: Symbol) -> Symbol:
        self._claim(symbol)
        self._builtins.append(symbol)
        return symbol

    def _apply_default(self, symbol: Symbol, default: Any) -> Symbol:
        if default is None:
            return symbol
        if isinstance(default, str):
            symbol.set_string(default)
        else:
            symbol.set_value(default)
        return symbol

    def link_var(self, name: str, owner: Any, key: str, desc: str = "",
                 default: Any = None, format: Optional[Format] = None) -> SymbolLinked:
        """Expose a host variable (`owner[key]` or `owner.key`) under name."""
        symbol = self.add(SymbolLinked(name, owner, key, desc, self, format))
        return self._apply_default(symbol, default)

    def link_funs(self, name: str, getter: Callable[[], Any], setter: Callable[[Any], Any],
                  desc: str = "", default: Any = None, format: Optional[Format] = None) -> SymbolFunctions:
        """Expose a value reached through a getter/setter pair."""
        symbol = self.add(SymbolFunctions(name, getter, setter, desc, self, format))
        return self._apply_default(symbol, default)

    def add_var(self, name: str, value: Any, desc: str = "", format: Optional[Format] = None) -> SymbolVar:
        return self.add(SymbolVar(name, value, desc, self, format))

    def add_value_var(self, name: str, desc: str = "") -> SymbolVar:
        return self.add_var(name, 0.0, desc, Format.DOUBLE)

    def add_string_var(self, name: str, desc: str = "") -> SymbolVar:
        return self.add_var(name, "", desc, Format.STRING)

    def add_builtin_var(self, name: str, value: Any, desc: str = "", format: Optional[Format] = None) -> SymbolVar:
        return self.add_builtin(SymbolVar(name, value, desc, self, format or format_for_value(value)))

    def add_scope(self, name: str, desc: str = "", type_name: str = "") -> 'Scope':
        return self.add(Scope(name, desc, self, type_name))

    def add_function(self, name: str, fun: Callable[..., Any], desc: str = "") -> SymbolFunction:
        return self.add(SymbolFunction(name, fun, desc, self))

    def add_builtin_function(self, name: str, fun: Callable[..., Any], desc: str = "") -> SymbolFunction:
        return self.add_builtin(SymbolFunction(name, fun, desc, self))

    def add_instance(self, name: str, template: 'Scope', desc: Optional[str] = None) -> 'Scope':
        """Declare a fresh, independent copy of template under name."""
        instance = template.clone()
        instance.name = name
        if desc is not None:
            instance.desc = desc
        return self.add(instance)

    def add_object(self, name: str, obj: EmplodeType, type_info, desc: str = "") -> 'Scope':
        """Declare a typed scope bound to a host object.

        Member functions registered on type_info become built-ins of the new
        scope, each bound to obj; obj.setup_config() then links its variables.
        """
        instance = self.add_scope(name, desc, type_info.name)
        instance.host_object = obj
        for member in type_info.member_functions:
            bound = functools.partial(member.target, obj)
            instance.add_builtin(SymbolFunction(member.name, member.fun, member.desc, instance, bound))
        obj.setup_config(instance)
        return instance

    # --- Values ---

    def as_double(self) -> float:
        raise CoercionError(f"Scope '{self.name}' cannot be used as a number.")

    def as_string(self) -> str:
        raise CoercionError(f"Scope '{self.name}' cannot be used as a string.")

    def copy_value(self, other: Symbol) -> bool:
        return False

    def update_default(self):
        for entry in self._entries:
            entry.update_default()
        self.default_val = ""

    # --- Copying ---

    def clone(self) -> 'Scope':
        """Deep-copy this scope and every declared and built-in child."""
        out = Scope(self.name, self.desc, None, self.type_name)
        self._copy_metadata_to(out)
        out.host_object = self.host_object
        out.strict_arity = self.strict_arity
        for entry in self._entries:
            out.add(entry.clone())
        for entry in self._builtins:
            out.add_builtin(entry.clone())
        return out

    # --- Output ---

    def write_contents(self, stream=None, prefix: str = "", comment_column: int = 40) -> str:
        """Emit the declared entries of this scope without the enclosing braces."""
        from emplode.emplode_printer import Printer
        text = Printer(comment_column=comment_column).pformat_contents(self, prefix)
        if stream is not None:
            stream.write(text)
        return text

    def report_error(self, message: str):
        cur = self
        while cur is not None:
            if cur.error_sink is not None:
                cur.error_sink(message)
                return
            cur = cur.scope
        print(message, file=sys.stderr)

    def __repr__(self) -> str:
        names = ', '.join(self._entry_map.keys())
        type_part = f" type={self.type_name!r}" if self.type_name else ""
        return f"<Scope {self.name!r}{type_part} entries=[{names}]>"
