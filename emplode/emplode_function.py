"""
Adapts native Python callables to the uniform `(list of Symbol) -> Symbol`
calling convention used by the environment.

A callable is inspected once, when it is wrapped. The result is one of three
adapter shapes: a nullary call, a raw pass-through of the Symbol list, or a
positional call whose parameters are each converted from a Symbol according
to their annotation. Member functions get the same shapes behind a check that
the bound object belongs to the capability type they were registered for.
"""
import collections.abc
import inspect
import typing
from typing import Any, Callable, List, Optional, Sequence, Tuple

from emplode.emplode_datatypes import (
    Symbol, SymbolVector, EmplodeType, Format,
    ArityError, CapabilityError, ReturnTypeError, make_temp,
)

# (args) -> Symbol, as seen by evaluators.
Target = Callable[[SymbolVector], Symbol]
ArityHandler = Callable[[str], None]

_PRIMITIVE_RETURNS = (bool, int, float, str)
_EMPTY = inspect.Parameter.empty


def _raise_arity(message: str):
    raise ArityError(message)


# =================================================================
# Return adaptation
# =================================================================

def convert_return(name: str, result: Any) -> Symbol:
    """Pass Symbols through; wrap primitives in a temporary Symbol."""
    if isinstance(result, Symbol):
        return result
    if isinstance(result, _PRIMITIVE_RETURNS):
        return make_temp(result)
    raise ReturnTypeError(
        f"Function '{name}' returned {type(result).__name__}; expected a Symbol, number, bool or string."
    )


def _check_return_annotation(name: str, annotation: Any):
    if annotation is _EMPTY or annotation is Any:
        return
    if isinstance(annotation, type) and (issubclass(annotation, Symbol) or annotation in _PRIMITIVE_RETURNS):
        return
    raise TypeError(f"Function '{name}' declares an unsupported return type {annotation!r}.")


# =================================================================
# Parameter inspection
# =================================================================

def _is_symbol_vector(annotation: Any) -> bool:
    if annotation is list or annotation is SymbolVector:
        return True
    origin = typing.get_origin(annotation)
    if origin in (list, collections.abc.Sequence):
        params = typing.get_args(annotation)
        return not params or params[0] is Symbol
    return False


def _resolved_hints(fun: Callable) -> dict:
    target = getattr(fun, "__func__", fun)
    try:
        return typing.get_type_hints(target)
    except (NameError, TypeError):
        # Unresolvable forward references; fall back to the raw annotations.
        return {}


class _Params:
    """The parameter layout of a callable, read once at wrap time."""

    def __init__(self, name: str, fun: Callable):
        sig = inspect.signature(fun)
        hints = _resolved_hints(fun)
        self.positional: List[Tuple[str, Any]] = []
        self.required = 0
        self.rest: Optional[Tuple[str, Any]] = None
        for param in sig.parameters.values():
            annotation = hints.get(param.name, param.annotation)
            if param.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
                self.positional.append((param.name, annotation))
                if param.default is _EMPTY:
                    self.required += 1
            elif param.kind == inspect.Parameter.VAR_POSITIONAL:
                self.rest = (param.name, annotation)
            elif param.kind == inspect.Parameter.KEYWORD_ONLY and param.default is _EMPTY:
                raise TypeError(f"Function '{name}' has a required keyword-only parameter '{param.name}'.")
        _check_return_annotation(name, hints.get("return", sig.return_annotation))

    def drop_first(self) -> Tuple[str, Any]:
        first = self.positional.pop(0)
        self.required = max(0, self.required - 1)
        return first


def _coercer(annotation: Any) -> Callable[[Symbol], Any]:
    if annotation is _EMPTY or annotation is Any:
        return lambda symbol: symbol.value
    return lambda symbol: symbol.as_type(annotation)


def _arity_message(name: str, expected: str, received: int) -> str:
    return f"Error in call to function '{name}'; expected {expected} arguments, but received {received}."


# =================================================================
# Adapter variants
# =================================================================

def _nullary(name: str, call: Callable[..., Any], on_arity_error: ArityHandler):
    def adapter(prefix: tuple, args: SymbolVector) -> Symbol:
        if len(args) != 0:
            on_arity_error(_arity_message(name, "ZERO", len(args)))
        return convert_return(name, call(*prefix))
    return adapter


def _passthrough(name: str, call: Callable[..., Any]):
    def adapter(prefix: tuple, args: SymbolVector) -> Symbol:
        return convert_return(name, call(*prefix, list(args)))
    return adapter


def _positional(name: str, call: Callable[..., Any], params: _Params, on_arity_error: ArityHandler):
    coercers = [_coercer(annotation) for _, annotation in params.positional]
    rest_coercer = _coercer(params.rest[1]) if params.rest else None
    required = params.required
    maximum = None if params.rest else len(coercers)
    if maximum == required:
        expected = str(required)
    elif maximum is None:
        expected = f"at least {required}"
    else:
        expected = f"{required} to {maximum}"

    def adapter(prefix: tuple, args: SymbolVector) -> Symbol:
        count = len(args)
        if count < required or (maximum is not None and count > maximum):
            message = _arity_message(name, expected, count)
            on_arity_error(message)
            if count < required:
                raise ArityError(message)
            args = args[:maximum]
        values = [coerce(arg) for coerce, arg in zip(coercers, args)]
        if rest_coercer is not None:
            values.extend(rest_coercer(arg) for arg in args[len(coercers):])
        return convert_return(name, call(*prefix, *values))
    return adapter


def _build(name: str, call: Callable[..., Any], params: _Params, on_arity_error: ArityHandler):
    if not params.positional and params.rest is None:
        return _nullary(name, call, on_arity_error)
    if len(params.positional) == 1 and params.rest is None and _is_symbol_vector(params.positional[0][1]):
        return _passthrough(name, call)
    return _positional(name, call, params, on_arity_error)


# =================================================================
# Public wrappers
# =================================================================

def wrap_function(name: str, fun: Callable[..., Any],
                  on_arity_error: Optional[ArityHandler] = None) -> Target:
    """Wrap a free function (or bound method) as a `(args) -> Symbol` target.

    on_arity_error receives the diagnostic for a wrong argument count; by
    default it raises ArityError.
    """
    if not callable(fun):
        raise TypeError(f"Cannot wrap non-callable {fun!r} as function '{name}'.")
    adapter = _build(name, fun, _Params(name, fun), on_arity_error or _raise_arity)

    def target(args: SymbolVector) -> Symbol:
        return adapter((), args)
    target.__name__ = name
    return target


def wrap_member_function(class_type: type, name: str, fun: Callable[..., Any],
                         on_arity_error: Optional[ArityHandler] = None) -> Callable[[EmplodeType, SymbolVector], Symbol]:
    """Wrap `fun(obj, ...)` as `(obj, args) -> Symbol` for objects of class_type."""
    if not (isinstance(class_type, type) and issubclass(class_type, EmplodeType)):
        raise TypeError(f"Member function '{name}' must be registered against an EmplodeType subclass.")
    params = _Params(name, fun)
    if not params.positional:
        raise TypeError(f"Member function '{name}' must take the object as its first parameter.")
    _, obj_annotation = params.drop_first()
    if obj_annotation is not _EMPTY and isinstance(obj_annotation, type) \
            and not issubclass(class_type, obj_annotation):
        raise TypeError(
            f"Member function '{name}' takes {obj_annotation.__name__}, "
            f"which does not match its type {class_type.__name__}."
        )
    adapter = _build(name, fun, params, on_arity_error or _raise_arity)

    def target(obj: EmplodeType, args: SymbolVector) -> Symbol:
        if not isinstance(obj, class_type):
            raise CapabilityError(
                f"Internal error: member function '{name}' called on {type(obj).__name__}, "
                f"expected {class_type.__name__}."
            )
        return adapter((obj,), args)
    target.__name__ = name
    return target


# =================================================================
# Function symbols
# =================================================================

class SymbolFunction(Symbol):
    """A symbol wrapping a native callable."""

    def __init__(self, name: str, fun: Callable[..., Any], desc: str = "", scope=None,
                 target: Optional[Target] = None):
        super().__init__(name, desc, scope, Format.NONE)
        self.fun = fun
        # Prebuilt targets (bound member functions) keep their own arity handling.
        self._bound_target = target
        self.target = target or wrap_function(name, fun, self._on_arity_error)

    @property
    def is_function(self) -> bool:
        return True

    def _on_arity_error(self, message: str):
        scope = self.scope
        root = scope.root if scope is not None else None
        if root is not None and root.strict_arity:
            raise ArityError(message)
        self.report_error(message)

    def invoke(self, args: Sequence[Symbol]) -> Symbol:
        return self.target(list(args))

    def __call__(self, *args: Symbol) -> Symbol:
        return self.invoke(args)

    def clone(self) -> 'SymbolFunction':
        out = SymbolFunction(self.name, self.fun, self.desc, None, self._bound_target)
        return self._copy_metadata_to(out)

    def __repr__(self) -> str:
        return f"<SymbolFunction {self.name!r}>"
