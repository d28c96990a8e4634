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
Backend and Method Types

Defines types related to:
- Computational backends used to evaluate compiled equation sets
- The transformation method (explicit substitution vs implicit root)

Usage
-----
>>> from partrafo.types.backends import Backend, TransformMethod
>>>
>>> backend: Backend = 'numpy'
>>> method = TransformMethod('implicit')
"""

from enum import Enum
from typing import Literal

# ============================================================================
# Backend Types
# ============================================================================

Backend = Literal["numpy", "jax"]
"""
Backend identifier for evaluating compiled equation sets.

Valid values:
- 'numpy': plain lambdify against NumPy (default, no compilation step)
- 'jax': lambdify against jax.numpy followed by jax.jit, selected by
  ``compile=True`` on the builders

Both backends return NumPy float64 matrices to the caller.
"""

DEFAULT_BACKEND: Backend = "numpy"


def backend_for(compile: bool) -> Backend:
    """Map the builders' ``compile`` flag to a backend"""
    return "jax" if compile else "numpy"


# ============================================================================
# Transformation Method
# ============================================================================


class TransformMethod(Enum):
    """
    Strategy used to build a parameter transformation.

    Attributes
    ----------
    EXPLICIT : str
        Inner parameters are given directly as expressions of the outer ones.
        Best for: log transforms, reparameterisations, fixing relations

    IMPLICIT : str
        Inner parameters are the root of an equation system (e.g. a
        steady state). Requires one root-finder call per evaluation.
    """

    EXPLICIT = "explicit"
    IMPLICIT = "implicit"
