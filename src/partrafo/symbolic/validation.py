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
Transformation Validator

Validates transformation definitions before anything is compiled.

Checks:
- Equation set is not empty
- Declared parameter names are unique identifiers
- Implicit mode: state names are identifiers (they are symbols too)
- Implicit mode: every dependent variable enters its residual system
- Implicit mode: free parameters that no equation references (warning)

Duplicate outputs and unresolved symbols are not checked here; they are
raised as DuplicateOutputError / UnresolvedSymbolError by the equation
set and the code generator where they arise.
"""

import warnings
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

from partrafo.exceptions import ValidationError
from partrafo.symbolic.equations import EquationSet
from partrafo.types.backends import TransformMethod

# ============================================================================
# Validation Result Container
# ============================================================================


@dataclass
class ValidationResult:
    """
    Container for validation results.

    Attributes
    ----------
    is_valid : bool
        True if the definition passed all validation checks
    errors : List[str]
        List of validation errors (empty if valid)
    warnings : List[str]
        List of validation warnings (non-fatal issues)
    info : Dict
        Derived information (symbols, dependent variables, ...)
    """

    is_valid: bool
    errors: List[str]
    warnings: List[str]
    info: Dict


# ============================================================================
# Transformation Validator
# ============================================================================


class TransformationValidator:
    """
    Validates the inputs of a transformation builder.

    Examples
    --------
    >>> f = EquationSet({'A': '-k1*A + k2*B', 'B': 'k1*A - k2*B'})
    >>> validator = TransformationValidator(f, ['A'], method='implicit')
    >>> result = validator.validate(raise_on_error=False)
    >>> result.info['dependent']
    ['B']
    """

    def __init__(
        self,
        equations: EquationSet,
        parameters: Optional[Sequence[str]] = None,
        method: Union[TransformMethod, str] = TransformMethod.EXPLICIT,
    ):
        self.equations = equations
        self.parameters = None if parameters is None else list(parameters)
        self.method = TransformMethod(method)
        self._errors: List[str] = []
        self._warnings: List[str] = []

    # ========================================================================
    # Public API
    # ========================================================================

    def validate(self, raise_on_error: bool = True) -> ValidationResult:
        """
        Validate the transformation definition.

        Parameters
        ----------
        raise_on_error : bool
            If True, raise ValidationError on validation failure

        Returns
        -------
        ValidationResult

        Raises
        ------
        ValidationError
            If validation fails and raise_on_error=True
        """
        self._errors = []
        self._warnings = []

        self._validate_equations()
        self._validate_parameters()

        if not self._errors and self.method is TransformMethod.IMPLICIT:
            self._validate_states()
            self._validate_dependent()
            self._check_unused_parameters()

        result = ValidationResult(
            is_valid=not self._errors,
            errors=self._errors.copy(),
            warnings=self._warnings.copy(),
            info=self._build_info(),
        )

        for msg in result.warnings:
            warnings.warn(msg, UserWarning, stacklevel=3)

        if not result.is_valid and raise_on_error:
            raise ValidationError(self._format_error_message())

        return result

    # ========================================================================
    # Validation Checks
    # ========================================================================

    def _validate_equations(self):
        """At least one equation is required"""
        if len(self.equations) == 0:
            self._errors.append("Equation set is empty - at least one equation required")

    def _validate_parameters(self):
        """Declared parameters must be unique identifiers"""
        if self.parameters is None:
            return

        seen = set()
        for name in self.parameters:
            if not isinstance(name, str) or not name.isidentifier():
                self._errors.append(f"Parameter name {name!r} is not a valid identifier")
            elif name in seen:
                self._errors.append(f"Parameter '{name}' declared more than once")
            seen.add(name)

    def _validate_states(self):
        for name in self.equations.names:
            if not name.isidentifier():
                self._errors.append(
                    f"State name {name!r} is not a valid identifier; implicit equations "
                    f"are named after the variable they determine",
                )

    def _validate_dependent(self):
        """Each dependent variable must appear in the residuals solved for"""
        dependent = self._dependent()
        if not dependent:
            self._warnings.append(
                "All states are declared as free parameters; nothing will be solved for",
            )
            return

        referenced = set(self.equations.subset(dependent).symbols())
        for name in dependent:
            if name not in referenced:
                self._errors.append(
                    f"Dependent variable '{name}' does not appear in the residuals "
                    f"{dependent}; the residual Jacobian is singular",
                )

    def _check_unused_parameters(self):
        if not self.parameters:
            return
        referenced = set(self.equations.symbols()) | set(self.equations.names)
        for name in self.parameters:
            if name not in referenced:
                self._warnings.append(
                    f"Free parameter '{name}' is not referenced by any equation",
                )

    # ========================================================================
    # Helpers
    # ========================================================================

    def _dependent(self) -> List[str]:
        free = set(self.parameters or ())
        return [n for n in self.equations.names if n not in free]

    def _build_info(self) -> Dict:
        info = {
            "method": self.method.value,
            "n_equations": len(self.equations),
            "symbols": self.equations.symbols(),
        }
        if self.method is TransformMethod.IMPLICIT:
            info["dependent"] = self._dependent()
        return info

    def _format_error_message(self) -> str:
        lines = [f"Validation of {self.method.value} transformation failed:"]
        lines.extend(f"  - {err}" for err in self._errors)
        return "\n".join(lines)
