# Copyright (C) 2025 Gil Benezer
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Equation Sets

An equation set is an ordered mapping from output name to an expression
string in infix notation, e.g.

    {'k1': 'exp(logk1)', 'A': 'exp(logA)'}

Expressions are parsed with SymPy against a fixed function vocabulary.
Every other identifier is a free symbol, so names such as 'E', 'S' or
'beta' are never mistaken for SymPy constants or functions.

This module also provides the two symbolic collaborators used by the
builders:
- Symbol extraction: EquationSet.symbols()
- Symbolic differentiation: EquationSet.jacobian()

Usage
-----
>>> eqns = EquationSet({'k1': 'exp(logk1)', 'k2': 'exp(logk2)'})
>>> eqns.symbols()
['logk1', 'logk2']
>>> eqns.jacobian(['logk1', 'logk2'])
k1.logk1 = exp(logk1)
k1.logk2 = 0
k2.logk1 = 0
k2.logk2 = exp(logk2)
"""

import keyword
import re
import tokenize
from functools import lru_cache
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import sympy as sp
from sympy.parsing.sympy_parser import convert_xor, parse_expr, standard_transformations

from partrafo.exceptions import DuplicateOutputError, ExpressionSyntaxError

ExpressionInput = Union[str, float, int, sp.Expr]
EquationSetInput = Union["EquationSet", Mapping[str, ExpressionInput], Iterable[Tuple[str, ExpressionInput]]]


# ============================================================================
# Parsing
# ============================================================================

FUNCTIONS: Dict[str, object] = {
    "exp": sp.exp,
    "log": sp.log,
    "log10": lambda x: sp.log(x, 10),
    "sqrt": sp.sqrt,
    "sin": sp.sin,
    "cos": sp.cos,
    "tan": sp.tan,
    "asin": sp.asin,
    "acos": sp.acos,
    "atan": sp.atan,
    "sinh": sp.sinh,
    "cosh": sp.cosh,
    "tanh": sp.tanh,
    "abs": sp.Abs,
    "sign": sp.sign,
    "min": sp.Min,
    "max": sp.Max,
    # Spellings produced by SymPy's printer (derivatives are re-parsed)
    "Abs": sp.Abs,
    "Min": sp.Min,
    "Max": sp.Max,
    "Heaviside": sp.Heaviside,
}
"""Function vocabulary available in expressions."""

# An identifier not preceded by a word character or dot, so the exponent
# marker in literals like 1e-5 or 2.e3 is not picked up.
_IDENTIFIER = re.compile(r"(?<![\w.])[A-Za-z_]\w*")

_TRANSFORMATIONS = standard_transformations + (convert_xor,)

# Only what the parser's own transformations emit; identifiers come from local_dict
_PARSER_GLOBALS = {
    "Integer": sp.Integer,
    "Float": sp.Float,
    "Rational": sp.Rational,
    "Symbol": sp.Symbol,
}


def symbol(name: str) -> sp.Symbol:
    """Return the SymPy symbol used for a parameter name"""
    return sp.Symbol(name, real=True)


def _placeholder(name: str) -> str:
    return f"__kw_{name}" if keyword.iskeyword(name) else name


def _identifiers(expr: str) -> List[str]:
    """Identifiers of an expression string in order of first appearance"""
    seen: List[str] = []
    for name in _IDENTIFIER.findall(expr):
        if name not in seen:
            seen.append(name)
    return seen


@lru_cache(maxsize=4096)
def parse_expression(expr: str) -> sp.Expr:
    """
    Parse an expression string into a SymPy expression.

    Args:
        expr: Infix expression, e.g. 'k1*A - k2*B' or 'exp(logk)^2'

    Returns:
        SymPy expression over real symbols

    Raises:
        ExpressionSyntaxError: If the string is not a valid expression
    """
    local_dict = {}
    for name in _identifiers(expr):
        if name in FUNCTIONS:
            local_dict[name] = FUNCTIONS[name]
        else:
            local_dict[_placeholder(name)] = symbol(name)

    # Python keywords ('lambda', 'in', ...) cannot reach the parser as names
    text = _IDENTIFIER.sub(lambda m: _placeholder(m.group()), expr)

    try:
        parsed = parse_expr(
            text,
            local_dict=local_dict,
            global_dict=dict(_PARSER_GLOBALS),
            transformations=_TRANSFORMATIONS,
        )
    except (SyntaxError, tokenize.TokenError, TypeError, NameError, AttributeError, ValueError) as e:
        raise ExpressionSyntaxError(f"Cannot parse expression '{expr}': {e}") from e

    if not isinstance(parsed, sp.Expr):
        raise ExpressionSyntaxError(f"Expression '{expr}' does not evaluate to a scalar expression")
    return parsed


# ============================================================================
# Equation Set
# ============================================================================


class EquationSet(Mapping[str, str]):
    """
    Ordered, immutable mapping from output name to expression.

    Values are stored as strings for display and as parsed SymPy
    expressions for differentiation and code generation.

    Example:
        >>> f = EquationSet({'A': '-k1*A + k2*B', 'B': 'k1*A - k2*B'})
        >>> f.names
        ('A', 'B')
        >>> f.symbols(exclude=f.names)
        ['k1', 'k2']
    """

    def __init__(self, equations: Optional[EquationSetInput] = None):
        self._equations: Dict[str, str] = {}
        self._exprs: Dict[str, sp.Expr] = {}
        self._symbols: Dict[str, List[str]] = {}

        if equations is None:
            return

        if isinstance(equations, EquationSet):
            self._equations = dict(equations._equations)
            self._exprs = dict(equations._exprs)
            self._symbols = dict(equations._symbols)
            return

        pairs = equations.items() if isinstance(equations, Mapping) else equations
        duplicates = []
        for name, expr in pairs:
            if not isinstance(name, str) or not name:
                raise ExpressionSyntaxError(f"Equation names must be non-empty strings, got {name!r}")
            if name in self._equations:
                duplicates.append(name)
                continue
            self._equations[name], self._exprs[name], self._symbols[name] = self._coerce(expr)

        if duplicates:
            raise DuplicateOutputError(duplicates)

    @staticmethod
    def _coerce(expr: ExpressionInput) -> Tuple[str, sp.Expr, List[str]]:
        if isinstance(expr, sp.Basic):
            text = str(expr)
            free = {s.name for s in expr.free_symbols}
            # Textual order first, then anything the printer renamed
            names = [n for n in _identifiers(text) if n in free]
            return text, expr, names + sorted(free.difference(names))
        if isinstance(expr, (int, float)):
            expr = repr(expr)
        if not isinstance(expr, str):
            raise ExpressionSyntaxError(f"Expressions must be strings, got {type(expr).__name__}")
        parsed = parse_expression(expr)
        # Names written in the string count even when they cancel, e.g. 'x - x'
        return expr, parsed, [n for n in _identifiers(expr) if n not in FUNCTIONS]

    # ========================================================================
    # Mapping Interface
    # ========================================================================

    def __getitem__(self, name: str) -> str:
        return self._equations[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._equations)

    def __len__(self) -> int:
        return len(self._equations)

    @property
    def names(self) -> Tuple[str, ...]:
        """Output names in order"""
        return tuple(self._equations)

    def expression(self, name: str) -> sp.Expr:
        """Parsed expression for one output"""
        return self._exprs[name]

    def sympy(self) -> List[sp.Expr]:
        """Parsed expressions in output order"""
        return [self._exprs[name] for name in self._equations]

    # ========================================================================
    # Symbol Extraction
    # ========================================================================

    def symbols(self, exclude: Optional[Iterable[str]] = None) -> List[str]:
        """
        Symbol names referenced by the expressions.

        For expressions given as strings these are the identifiers written
        in the string, so a symbol that cancels on parsing ('x - x') is
        still reported.

        Args:
            exclude: Names to leave out of the result

        Returns:
            Symbol names in order of first appearance
        """
        excluded = set(exclude or ())
        found: List[str] = []
        for ordered in self._symbols.values():
            for sym in ordered:
                if sym not in excluded and sym not in found:
                    found.append(sym)
        return found

    # ========================================================================
    # Symbolic Differentiation
    # ========================================================================

    def jacobian(self, variables: Sequence[str]) -> "EquationSet":
        """
        Symbolic Jacobian of the equation set.

        Args:
            variables: Names to differentiate with respect to

        Returns:
            EquationSet with one entry per (output, variable) pair, in
            row-major order, named '<output>.<variable>'. Zero derivatives
            are kept so the result reshapes to (len(self), len(variables)).
        """
        pairs = []
        for name, expr in self._exprs.items():
            for var in variables:
                pairs.append((f"{name}.{var}", sp.diff(expr, symbol(var))))
        return EquationSet(pairs)

    # ========================================================================
    # Set Operations
    # ========================================================================

    def subset(self, names: Iterable[str]) -> "EquationSet":
        """Equations for the given names, in the given order"""
        names = list(names)
        missing = [n for n in names if n not in self._equations]
        if missing:
            raise KeyError(f"Equations not defined: {missing}")
        result = EquationSet()
        for n in names:
            result._equations[n] = self._equations[n]
            result._exprs[n] = self._exprs[n]
            result._symbols[n] = self._symbols[n]
        return result

    def concat(self, other: EquationSetInput) -> "EquationSet":
        """
        Append another equation set.

        Raises:
            DuplicateOutputError: If both sets define the same name
        """
        other = as_equation_set(other)
        clash = [n for n in other.names if n in self._equations]
        if clash:
            raise DuplicateOutputError(clash, context="concatenating equation sets")
        result = EquationSet(self)
        result._equations.update(other._equations)
        result._exprs.update(other._exprs)
        result._symbols.update(other._symbols)
        return result

    __add__ = concat

    def replace(self, replacements: EquationSetInput) -> "EquationSet":
        """
        Replace equations by name, keeping the original order.

        Typically used to swap a redundant steady-state equation for a
        conservation law:

            >>> f = f.replace({'B': 'A + B - total'})
        """
        replacements = as_equation_set(replacements)
        unknown = [n for n in replacements.names if n not in self._equations]
        if unknown:
            raise KeyError(f"Cannot replace undefined equations: {unknown}")
        result = EquationSet(self)
        result._equations.update(replacements._equations)
        result._exprs.update(replacements._exprs)
        result._symbols.update(replacements._symbols)
        return result

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Mapping):
            return NotImplemented
        try:
            other = as_equation_set(other)
        except ExpressionSyntaxError:
            return False
        return self.names == other.names and all(
            sp.simplify(self._exprs[n] - other._exprs[n]) == 0 for n in self.names
        )

    __hash__ = None

    def __repr__(self) -> str:
        if not self._equations:
            return "EquationSet()"
        width = max(len(n) for n in self._equations)
        return "\n".join(f"{n:<{width}} = {e}" for n, e in self._equations.items())


def as_equation_set(equations: EquationSetInput) -> EquationSet:
    """Coerce a mapping or sequence of pairs to an EquationSet"""
    if isinstance(equations, EquationSet):
        return equations
    return EquationSet(equations)
