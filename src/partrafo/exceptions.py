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
Exceptions and Warnings

Two families of failures exist:

Construction errors (raised while building a transformation):
- DuplicateOutputError: output name defined twice
- UnresolvedSymbolError: expression references an undeclared symbol
- ExpressionSyntaxError: expression string cannot be parsed
- ValidationError: aggregated validator failure

Numerical errors (raised while calling a transformation):
- RootFindingError: root-finder did not converge
- SingularJacobianError: implicit function theorem step impossible

Construction errors derive from ValueError, numerical errors from
RuntimeError, so callers may catch either the package-specific class
or the builtin one.
"""

from typing import Iterable, Optional


class TransformationError(Exception):
    """Base class for all errors raised by partrafo"""

    pass


# ============================================================================
# Construction Errors
# ============================================================================


class ConstructionError(TransformationError, ValueError):
    """Raised when a transformation cannot be built"""

    pass


class DuplicateOutputError(ConstructionError):
    """Raised when an output name is defined more than once"""

    def __init__(self, names: Iterable[str], context: Optional[str] = None):
        self.names = sorted(set(names))
        msg = f"Duplicate output names: {self.names}"
        if context:
            msg = f"{msg} ({context})"
        super().__init__(msg)


class UnresolvedSymbolError(ConstructionError):
    """Raised when expressions reference symbols missing from the parameter list"""

    def __init__(self, symbols: Iterable[str], parameters: Optional[Iterable[str]] = None):
        self.symbols = list(symbols)
        msg = f"Unresolved symbols {self.symbols}"
        if parameters is not None:
            msg = f"{msg}; declared parameters are {list(parameters)}"
        super().__init__(msg)


class ExpressionSyntaxError(ConstructionError):
    """Raised when an expression string cannot be parsed"""

    pass


class ValidationError(ConstructionError):
    """Raised when validation of a transformation definition fails"""

    pass


# ============================================================================
# Call-time Errors
# ============================================================================


class MissingParameterError(TransformationError, ValueError):
    """Raised when an evaluator is called without values for required names"""

    def __init__(self, names: Iterable[str], where: Optional[str] = None):
        self.names = list(names)
        msg = f"No values supplied for {self.names}"
        if where:
            msg = f"{msg} in {where}"
        super().__init__(msg)


class NumericalError(TransformationError, RuntimeError):
    """Raised when a numerical step fails during a transformation call"""

    pass


class RootFindingError(NumericalError):
    """Raised when the root-finder fails to converge"""

    pass


class SingularJacobianError(NumericalError):
    """Raised when the residual Jacobian at the root cannot be solved against"""

    pass


# ============================================================================
# Warnings
# ============================================================================


class NegativeRootWarning(UserWarning):
    """Issued when a negative root was clamped to zero"""

    pass
