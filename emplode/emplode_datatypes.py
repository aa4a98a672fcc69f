"""
Defines the core value types for the Emplode configuration environment.

Every value the environment works with is a Symbol. Symbols differ in where
they keep their value (owned, linked to a host variable, or reached through a
getter/setter pair) but share a single coercion table keyed by Format.
"""

import math
import sys
import weakref
import collections.abc
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional, TYPE_CHECKING
from urllib.parse import urlparse

if TYPE_CHECKING:
    from emplode.emplode_scope import Scope


# =================================================================
# Errors
# =================================================================

class EmplodeError(Exception):
    """Base class for all errors raised by the environment."""
    pass


class DuplicateSymbolError(EmplodeError, KeyError):
    def __init__(self, name: str, scope_name: str = ""):
        where = f" in scope '{scope_name}'" if scope_name else ""
        super().__init__(f"Symbol '{name}' is already declared{where}.")
        self.name = name

    def __str__(self) -> str:
        # KeyError would quote the message otherwise.
        return self.args[0]


class CoercionError(EmplodeError, TypeError):
    pass


class ConstraintError(EmplodeError, ValueError):
    pass


class ArityError(EmplodeError, TypeError):
    pass


class CapabilityError(EmplodeError, TypeError):
    pass


class ReturnTypeError(EmplodeError, TypeError):
    pass


# =================================================================
# Formats and the coercion table
# =================================================================

class Format(Enum):
    NONE = 0
    SCOPE = 1
    # Values
    BOOL = 2
    INT = 3
    UNSIGNED = 4
    DOUBLE = 5
    # Strings
    STRING = 6
    FILENAME = 7
    PATH = 8
    URL = 9
    ALPHABETIC = 10
    ALPHANUMERIC = 11
    NUMERIC = 12

    @property
    def is_numeric(self) -> bool:
        return self in _NUMERIC_FORMATS

    @property
    def is_string(self) -> bool:
        return self in _STRING_FORMATS


_NUMERIC_FORMATS = frozenset({Format.BOOL, Format.INT, Format.UNSIGNED, Format.DOUBLE})
_STRING_FORMATS = frozenset({
    Format.STRING, Format.FILENAME, Format.PATH, Format.URL,
    Format.ALPHABETIC, Format.ALPHANUMERIC, Format.NUMERIC,
})

_TRUE_WORDS = frozenset({"true", "yes", "on"})
_FALSE_WORDS = frozenset({"false", "no", "off", ""})


def format_double(value: float) -> str:
    """Canonical text for a double: integral values drop the fractional part."""
    value = float(value)
    if math.isfinite(value) and value.is_integer() and abs(value) < 1e16:
        return str(int(value))
    return repr(value)


def _parse_double(text: str) -> float:
    try:
        return float(text.strip())
    except ValueError:
        raise CoercionError(f"Cannot convert {text!r} to a number.") from None


def _parse_int(text: str) -> int:
    text = text.strip()
    try:
        return int(text)
    except ValueError:
        return int(_parse_double(text))


def _parse_bool(text: str) -> bool:
    word = text.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    return _parse_double(word) != 0


def _unsigned(value) -> int:
    value = int(value)
    if value < 0:
        raise ConstraintError(f"Value {value} cannot be stored in an unsigned entry.")
    return value


class _Coercion(NamedTuple):
    to_double: Callable[[Any], float]
    to_string: Callable[[Any], str]
    from_double: Callable[[float], Any]
    from_string: Callable[[str], Any]


_STRING_COERCION = _Coercion(
    to_double=_parse_double,
    to_string=str,
    from_double=format_double,
    from_string=str,
)

COERCIONS: Dict[Format, _Coercion] = {
    Format.BOOL: _Coercion(
        to_double=lambda v: 1.0 if v else 0.0,
        to_string=lambda v: "1" if v else "0",
        from_double=lambda d: d != 0,
        from_string=_parse_bool,
    ),
    Format.INT: _Coercion(
        to_double=float,
        to_string=lambda v: str(int(v)),
        from_double=int,
        from_string=_parse_int,
    ),
    Format.UNSIGNED: _Coercion(
        to_double=float,
        to_string=lambda v: str(int(v)),
        from_double=_unsigned,
        from_string=lambda s: _unsigned(_parse_int(s)),
    ),
    Format.DOUBLE: _Coercion(
        to_double=float,
        to_string=format_double,
        from_double=float,
        from_string=_parse_double,
    ),
}
for _fmt in _STRING_FORMATS:
    COERCIONS[_fmt] = _STRING_COERCION


def format_for_value(value: Any) -> Format:
    """Deduce the primitive Format that matches a Python value."""
    # bool is a subclass of int, so it has to be checked first.
    if isinstance(value, bool):
        return Format.BOOL
    if isinstance(value, int):
        return Format.INT
    if isinstance(value, float):
        return Format.DOUBLE
    if isinstance(value, str):
        return Format.STRING
    raise CoercionError(f"No primitive format for value of type {type(value).__name__}.")


def _check_string_format(fmt: Format, text: str) -> Optional[str]:
    """Returns a problem description, or None if text fits fmt."""
    if fmt == Format.ALPHABETIC and not text.isalpha():
        return "must contain only letters"
    if fmt == Format.ALPHANUMERIC and not text.isalnum():
        return "must contain only letters and digits"
    if fmt == Format.NUMERIC:
        try:
            float(text)
        except ValueError:
            return "must be numeric"
    if fmt == Format.FILENAME and (not text or "/" in text or "\\" in text):
        return "must be a file name without directories"
    if fmt == Format.PATH and not text:
        return "must be a non-empty path"
    if fmt == Format.URL:
        parsed = urlparse(text)
        if not (parsed.scheme and (parsed.netloc or parsed.path)):
            return "must be a URL"
    return None


# =================================================================
# Capability base for host objects
# =================================================================

class EmplodeType(ABC):
    """Base class for host objects whose methods are exposed as member functions.

    A member function is registered against a subclass of EmplodeType (its
    capability type); calls check that the bound object really is one.
    """

    def setup_config(self, scope: 'Scope') -> None:
        """Link this object's variables into its instance scope."""
        pass


# =================================================================
# Symbols
# =================================================================

class Symbol(ABC):
    """A named, dynamically-typed value in the environment.

    Subclasses supply storage through _get/_set; conversion between
    representations is driven by COERCIONS[self.format].
    """

    def __init__(self, name: str, desc: str = "", scope: Optional['Scope'] = None,
                 format: Format = Format.NONE):
        self.name = name
        self.desc = desc
        self.default_val = ""
        self.format = format
        self.is_temporary = False
        self.min: Optional[float] = None
        self.max: Optional[float] = None
        self.integer_only = False
        self._scope_ref = weakref.ref(scope) if scope is not None else None

    # --- Ownership ---

    @property
    def scope(self) -> Optional['Scope']:
        """The Scope this symbol was declared in (None for temporaries)."""
        if self._scope_ref is None:
            return None
        return self._scope_ref()

    def _set_scope(self, scope: Optional['Scope']):
        self._scope_ref = weakref.ref(scope) if scope is not None else None

    # --- Kind predicates ---

    @property
    def is_numeric(self) -> bool:
        return self.format.is_numeric

    @property
    def is_bool(self) -> bool:
        return self.format == Format.BOOL

    @property
    def is_int(self) -> bool:
        return self.format in (Format.INT, Format.UNSIGNED)

    @property
    def is_double(self) -> bool:
        return self.format == Format.DOUBLE

    @property
    def is_string(self) -> bool:
        return self.format.is_string

    @property
    def is_scope(self) -> bool:
        return False

    @property
    def is_function(self) -> bool:
        return False

    # --- Chainable metadata setters ---

    def set_name(self, name: str) -> 'Symbol':
        self.name = name
        return self

    def set_desc(self, desc: str) -> 'Symbol':
        self.desc = desc
        return self

    def set_default(self, text: str) -> 'Symbol':
        self.default_val = text
        return self

    def set_temporary(self, flag: bool = True) -> 'Symbol':
        self.is_temporary = flag
        return self

    def set_min(self, value: float) -> 'Symbol':
        self.min = value
        return self

    def set_max(self, value: float) -> 'Symbol':
        self.max = value
        return self

    def set_integer_only(self, flag: bool = True) -> 'Symbol':
        self.integer_only = flag
        return self

    def update_default(self):
        """Make the current value the one written out."""
        self.default_val = ""

    # --- Storage hooks ---

    def _get(self) -> Any:
        raise CoercionError(f"Symbol '{self.name}' does not hold a value.")

    def _set(self, value: Any):
        raise CoercionError(f"Symbol '{self.name}' cannot be assigned a value.")

    def _coercion(self) -> _Coercion:
        row = COERCIONS.get(self.format)
        if row is None:
            raise CoercionError(
                f"Symbol '{self.name}' of format {self.format.name} has no value conversion."
            )
        return row

    # --- Reading ---

    @property
    def value(self) -> Any:
        """The current value as a plain Python object."""
        return self._get()

    def as_double(self) -> float:
        return self._coercion().to_double(self._get())

    def as_string(self) -> str:
        return self._coercion().to_string(self._get())

    def as_int(self) -> int:
        if self.is_string:
            return _parse_int(self.as_string())
        return int(self.as_double())

    def as_bool(self) -> bool:
        if self.is_string:
            return _parse_bool(self.as_string())
        return self.as_double() != 0

    def as_scope(self) -> 'Scope':
        raise CoercionError(f"Symbol '{self.name}' is not a scope.")

    def as_type(self, py_type: Any) -> Any:
        """Convert to the Python type a native parameter requires."""
        if py_type is float:
            return self.as_double()
        if py_type is bool:
            return self.as_bool()
        if py_type is int:
            return self.as_int()
        if py_type is str:
            return self.as_string()
        if isinstance(py_type, type) and issubclass(py_type, Symbol):
            if not isinstance(self, py_type):
                raise CoercionError(
                    f"Symbol '{self.name}' is a {type(self).__name__}, not a {py_type.__name__}."
                )
            return self
        raise CoercionError(f"Cannot convert symbol '{self.name}' to {py_type!r}.")

    # --- Writing ---

    def _check(self, value: Any):
        if self.format.is_numeric:
            number = float(value)
            if self.integer_only and not number.is_integer():
                raise ConstraintError(f"'{self.name}' only accepts integers (got {format_double(number)}).")
            if self.min is not None and number < self.min:
                raise ConstraintError(
                    f"'{self.name}' must be at least {format_double(self.min)} (got {format_double(number)})."
                )
            if self.max is not None and number > self.max:
                raise ConstraintError(
                    f"'{self.name}' must be at most {format_double(self.max)} (got {format_double(number)})."
                )
        elif self.format.is_string:
            problem = _check_string_format(self.format, value)
            if problem:
                raise ConstraintError(f"'{self.name}' {problem} (got {value!r}).")

    def set_value(self, value: float) -> 'Symbol':
        converted = self._coercion().from_double(value)
        self._check(converted)
        self._set(converted)
        self.default_val = ""
        return self

    def set_string(self, text: str) -> 'Symbol':
        converted = self._coercion().from_string(text)
        self._check(converted)
        self._set(converted)
        self.default_val = ""
        return self

    def copy_value(self, other: 'Symbol') -> bool:
        """Assign from another symbol's canonical form; False if this kind holds no value."""
        if self.is_string:
            self.set_string(other.as_string())
            return True
        if self.is_numeric:
            if self.is_int and other.is_int:
                # Integers past 2**53 do not survive a trip through float.
                self.set_value(other.value)
            else:
                self.set_value(other.as_double())
            return True
        return False

    # --- Structure ---

    def lookup_entry(self, name: str, scan_outer: bool = True) -> Optional['Symbol']:
        return self if name == "" else None

    def has(self, name: str) -> bool:
        return self.lookup_entry(name) is not None

    def invoke(self, args: List['Symbol']) -> 'Symbol':
        raise CoercionError(f"Symbol '{self.name}' is not a function.")

    def report_error(self, message: str):
        scope = self.scope
        if scope is not None:
            scope.report_error(message)
        else:
            print(message, file=sys.stderr)

    @abstractmethod
    def clone(self) -> 'Symbol':
        """Allocate an independent copy of this symbol."""
        raise NotImplementedError

    def _copy_metadata_to(self, other: 'Symbol') -> 'Symbol':
        other.default_val = self.default_val
        other.is_temporary = self.is_temporary
        other.min = self.min
        other.max = self.max
        other.integer_only = self.integer_only
        other._scope_ref = self._scope_ref
        return other

    def write(self, stream=None, prefix: str = "", comment_column: int = 40) -> str:
        """Emit this symbol as config text; returns the text and writes it to stream if given."""
        from emplode.emplode_printer import Printer
        text = Printer(comment_column=comment_column).pformat(self, prefix)
        if stream is not None:
            stream.write(text)
        return text

    def __repr__(self) -> str:
        try:
            shown = self.as_string()
        except EmplodeError:
            shown = "?"
        return f"<{type(self).__name__} {self.name!r} {self.format.name}={shown!r}>"


class SymbolVar(Symbol):
    """A symbol that owns its value (declared variables and temporaries)."""

    def __init__(self, name: str, value: Any, desc: str = "", scope: Optional['Scope'] = None,
                 format: Optional[Format] = None):
        fmt = format or format_for_value(value)
        super().__init__(name, desc, scope, fmt)
        row = self._coercion()
        self._value = row.from_string(value) if isinstance(value, str) else row.from_double(value)

    def _get(self) -> Any:
        return self._value

    def _set(self, value: Any):
        self._value = value

    def clone(self) -> 'SymbolVar':
        out = SymbolVar(self.name, self._value, self.desc, None, self.format)
        return self._copy_metadata_to(out)


class SymbolLinked(Symbol):
    """A symbol that reads and writes a variable owned by the host.

    The variable is `owner[key]` for mutable mappings and `owner.key`
    otherwise.
    """

    def __init__(self, name: str, owner: Any, key: str, desc: str = "",
                 scope: Optional['Scope'] = None, format: Optional[Format] = None):
        self.owner = owner
        self.key = key
        self._use_item = isinstance(owner, collections.abc.MutableMapping)
        fmt = format or format_for_value(self._get())
        super().__init__(name, desc, scope, fmt)

    def _get(self) -> Any:
        if self._use_item:
            return self.owner[self.key]
        return getattr(self.owner, self.key)

    def _set(self, value: Any):
        if self._use_item:
            self.owner[self.key] = value
        else:
            setattr(self.owner, self.key, value)

    def clone(self) -> 'SymbolLinked':
        out = SymbolLinked(self.name, self.owner, self.key, self.desc, None, self.format)
        return self._copy_metadata_to(out)


class SymbolFunctions(Symbol):
    """A symbol whose value is read through a getter and written through a setter."""

    def __init__(self, name: str, getter: Callable[[], Any], setter: Callable[[Any], Any],
                 desc: str = "", scope: Optional['Scope'] = None, format: Optional[Format] = None):
        self.getter = getter
        self.setter = setter
        super().__init__(name, desc, scope, format or format_for_value(getter()))

    def _get(self) -> Any:
        return self.getter()

    def _set(self, value: Any):
        self.setter(value)

    def clone(self) -> 'SymbolFunctions':
        out = SymbolFunctions(self.name, self.getter, self.setter, self.desc, None, self.format)
        return self._copy_metadata_to(out)


# =================================================================
# Temporaries
# =================================================================

def make_temp(value: Any, format: Optional[Format] = None) -> SymbolVar:
    """Allocate an unnamed, scope-less symbol holding value.

    The caller owns the result; it is never entered into any Scope.
    """
    out = SymbolVar("", value, "", None, format)
    out.set_temporary()
    return out


SymbolVector = List[Symbol]
