from emplode.emplode_datatypes import (
    Format, Symbol, SymbolVar, SymbolLinked, SymbolFunctions, SymbolVector, EmplodeType,
    EmplodeError, DuplicateSymbolError, CoercionError, ConstraintError, ArityError,
    CapabilityError, ReturnTypeError, make_temp,
)
from emplode.emplode_function import SymbolFunction, wrap_function, wrap_member_function, convert_return
from emplode.emplode_scope import Scope
from emplode.emplode_printer import Printer, render_template
from emplode.emplode_reader import ConfigError, load_config
from emplode.emplode_runtime import Environment, TypeInfo, emplode_api_method
