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
partrafo
========

Parameter transformations with Jacobians for dynamical-system model
fitting. Outer parameters (as seen by an optimizer) are mapped to inner
parameters (as consumed by a model), either by explicit substitution or
as the root of an equation system, and the Jacobian of the mapping is
propagated through chains of transformations.

>>> from partrafo import build_explicit, build_implicit, compose
>>>
>>> p_log = build_explicit({'k1': 'exp(logk1)', 'k2': 'exp(logk2)',
...                         'A': 'exp(logA)', 'B': 'exp(logB)'})
>>> steady = build_implicit({'A': '-k1*A + k2*B', 'B': 'k1*A - k2*B'}, ['A'])
>>>
>>> p = compose(steady, p_log)
>>> out = p({'logk1': 1.0, 'logk2': -1.0, 'logA': 0.0, 'logB': 0.0})
>>> out.jacobian  # d(k1, k2, A, B) / d(logk1, logk2, logA, logB)

Authors
-------
Gil Benezer

License
-------
GNU Affero General Public License v3.0
"""

__version__ = "0.1.0"

from .core import Jacobian, ParameterVector, as_parameter_vector
from .exceptions import (
    ConstructionError,
    DuplicateOutputError,
    ExpressionSyntaxError,
    MissingParameterError,
    NegativeRootWarning,
    NumericalError,
    RootFindingError,
    SingularJacobianError,
    TransformationError,
    UnresolvedSymbolError,
    ValidationError,
)
from .symbolic import EquationSet, as_equation_set
from .transforms import (
    ComposedTransformation,
    ExplicitTransformation,
    GuessCache,
    ImplicitTransformation,
    TransformationFunction,
    build_explicit,
    build_implicit,
    build_transformation,
    compose,
)
from .types import TransformMethod

__all__ = [
    "__version__",
    # Values
    "EquationSet",
    "Jacobian",
    "ParameterVector",
    "as_equation_set",
    "as_parameter_vector",
    # Transformations
    "ComposedTransformation",
    "ExplicitTransformation",
    "GuessCache",
    "ImplicitTransformation",
    "TransformMethod",
    "TransformationFunction",
    "build_explicit",
    "build_implicit",
    "build_transformation",
    "compose",
    # Errors
    "ConstructionError",
    "DuplicateOutputError",
    "ExpressionSyntaxError",
    "MissingParameterError",
    "NegativeRootWarning",
    "NumericalError",
    "RootFindingError",
    "SingularJacobianError",
    "TransformationError",
    "UnresolvedSymbolError",
    "ValidationError",
]
