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
Core Types

Defines the vocabulary shared by the transformation engine:
- Parameter names and value mappings
- Residual and evaluator callables
- Root-finder results
- Builder options

These are TYPE DEFINITIONS only - no implementation logic.
"""

from typing import Callable, Dict, Mapping, Optional, Union

import numpy as np
from typing_extensions import TypedDict

# ============================================================================
# Names and Values
# ============================================================================

ParameterName = str
"""Name of a single parameter, e.g. 'k1' or 'logA'."""

ParameterValues = Dict[ParameterName, float]
"""
Plain name → value mapping.

Examples
--------
>>> pars: ParameterValues = {'logk1': 1.0, 'logk2': -1.0}
"""

ParameterInput = Mapping[ParameterName, Union[float, np.ndarray]]
"""Anything accepted as input by a compiled evaluator."""

EvaluationMatrix = np.ndarray
"""
Result of a compiled evaluator.

Shape (n_rows, n_outputs). A scalar input yields a single row; array
inputs of length n yield n rows.
"""

# ============================================================================
# Callables
# ============================================================================

ResidualFunction = Callable[[np.ndarray, ParameterValues], np.ndarray]
"""
Residual function f(x, parms) -> residuals, handed to the root-finder.

x holds the values of the dependent variables, parms the auxiliary values.
"""

ResidualJacobian = Callable[[np.ndarray, ParameterValues], np.ndarray]
"""Square Jacobian d f / d x of a ResidualFunction."""


# ============================================================================
# Root-finder Results
# ============================================================================


class RootResult(TypedDict):
    """
    Result of a root-finder call.

    Fields
    ------
    root : np.ndarray
        Solution vector (n,)
    f_root : np.ndarray
        Residuals at the solution (n,)
    converged : bool
        Whether the solver reported success
    nfev : int
        Number of residual evaluations
    start : np.ndarray
        Initial guess the solver started from
    message : str
        Solver status message

    Examples
    --------
    >>> result: RootResult = multiroot(f, start=np.array([1.0]), parms={})
    >>> if result['converged']:
    ...     print(result['root'])
    """

    root: np.ndarray
    f_root: np.ndarray
    converged: bool
    nfev: int
    start: np.ndarray
    message: str


RootFinder = Callable[..., RootResult]
"""
Root-finder collaborator.

Called as ``root_finder(f, start, parms, jacobian=..., positive=..., **options)``.
"""


# ============================================================================
# Builder Options
# ============================================================================


class TransformOptions(TypedDict, total=False):
    """
    Options recognised by the transformation builders.

    Fields
    ------
    attach_input : bool
        Explicit only. Append outer parameters not produced as outputs.
    keep_root : bool
        Implicit only. Warm-start the root-finder from the last root.
    positive : bool
        Implicit only. Repair negative roots by restart and clamping.
    compile : bool
        JIT-compile evaluators (JAX backend).
    model_name : Optional[str]
        Base name of generated evaluators.
    condition : Optional[str]
        Condition label; qualifies model_name.
    verbose : bool
        Print compilation progress.
    root_finder : RootFinder
        Implicit only. Root-finding routine, see multiroot.
    maxiter : int
        Implicit only. Root-finder evaluation budget per unknown.
    tol : float
        Implicit only. Relative tolerance between iterates.
    atol : float
        Implicit only. Absolute residual tolerance accepting a root.
    """

    attach_input: bool
    keep_root: bool
    positive: bool
    compile: bool
    model_name: Optional[str]
    condition: Optional[str]
    verbose: bool
    root_finder: RootFinder
    maxiter: int
    tol: float
    atol: float
