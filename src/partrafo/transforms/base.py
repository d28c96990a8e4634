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
Transformation Base Class

Common interface of every parameter transformation:

    transform(outer, fixed=None, want_deriv=True) -> ParameterVector

- outer: outer parameter values, optionally carrying an upstream Jacobian
- fixed: values that are used for evaluation but receive no derivative
  column
- want_deriv: attach the Jacobian of the result (chained with the
  upstream Jacobian of ``outer`` if present)

Concrete strategies:
- ExplicitTransformation: direct algebraic substitution
- ImplicitTransformation: root of an equation system
- ComposedTransformation: one transformation applied after another
"""

import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional, Sequence, Tuple

from partrafo.core.jacobian import Jacobian
from partrafo.core.parameter_vector import ParameterVector, ParameterVectorInput, as_parameter_vector
from partrafo.symbolic.equations import EquationSet

if TYPE_CHECKING:
    from partrafo.transforms.composition import ComposedTransformation


def sanitize_condition(condition: str) -> str:
    """Make a condition label usable inside generated names"""
    return re.sub(r"\W", "_", str(condition))


def qualify_model_name(model_name: Optional[str], condition: Optional[str]) -> Optional[str]:
    """Append the sanitized condition to a model name, if both are given"""
    if model_name is not None and condition is not None:
        return f"{model_name}_{sanitize_condition(condition)}"
    return model_name


def suffixed(model_name: Optional[str], suffix: str) -> Optional[str]:
    """Name of a derived artefact, e.g. 'steady_dfdx'"""
    return None if model_name is None else f"{model_name}_{suffix}"


class TransformationFunction(ABC):
    """
    Abstract base class for parameter transformations.

    Subclasses implement ``_transform`` on already coerced inputs; the
    metadata (equations, declared parameters, condition, model name) is
    fixed at construction.

    Example:
        >>> p_log = build_explicit({'k1': 'exp(logk1)', 'k2': 'exp(logk2)'})
        >>> out = p_log({'logk1': 1.0, 'logk2': -1.0})
        >>> out.jacobian.cols
        ('logk1', 'logk2')
    """

    def __init__(
        self,
        equations: Optional[EquationSet],
        parameters: Sequence[str],
        condition: Optional[str] = None,
        model_name: Optional[str] = None,
    ):
        self._equations = equations
        self._parameters = tuple(parameters)
        self._condition = condition
        self._model_name = qualify_model_name(model_name, condition)

    # ========================================================================
    # Metadata
    # ========================================================================

    @property
    def equations(self) -> Optional[EquationSet]:
        """Equation set the transformation was built from"""
        return self._equations

    @property
    def parameters(self) -> Tuple[str, ...]:
        """Declared (outer) parameter names"""
        return self._parameters

    @property
    def condition(self) -> Optional[str]:
        return self._condition

    @property
    def model_name(self) -> Optional[str]:
        """Base name of generated evaluators, qualified by the condition"""
        return self._model_name

    # ========================================================================
    # Evaluation
    # ========================================================================

    def __call__(
        self,
        outer: ParameterVectorInput,
        fixed: Optional[ParameterVectorInput] = None,
        want_deriv: bool = True,
    ) -> ParameterVector:
        """
        Evaluate the transformation.

        Args:
            outer: Outer parameter values, optionally carrying a Jacobian
            fixed: Values used for evaluation only (no derivative column)
            want_deriv: Attach the Jacobian to the result

        Returns:
            Inner ParameterVector, with Jacobian if want_deriv
        """
        outer = as_parameter_vector(outer)
        fixed = None if fixed is None else as_parameter_vector(fixed)
        return self._transform(outer, fixed, want_deriv)

    @abstractmethod
    def _transform(
        self,
        outer: ParameterVector,
        fixed: Optional[ParameterVector],
        want_deriv: bool,
    ) -> ParameterVector:
        pass

    @staticmethod
    def _chain(local: Jacobian, outer: ParameterVector) -> Jacobian:
        """Compose with the Jacobian carried by ``outer``, if any"""
        if outer.jacobian is None:
            return local
        return local.chain(outer.jacobian)

    # ========================================================================
    # Composition
    # ========================================================================

    def then(self, next_transform: "TransformationFunction") -> "ComposedTransformation":
        """
        Apply ``next_transform`` to the output of this transformation.

        ``a.then(b)`` is ``compose(b, a)``.
        """
        from partrafo.transforms.composition import compose

        return compose(next_transform, self)

    def __repr__(self) -> str:
        label = f", condition='{self._condition}'" if self._condition is not None else ""
        return f"{self.__class__.__name__}(parameters={list(self._parameters)}{label})"
