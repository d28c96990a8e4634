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
Implicit Parameter Transformations

Inner parameters are defined as the root of an equation system, typically
a steady state:

    f = {'A': '-k1*A + k2*B',
         'B': 'k1*A - k2*B'}

Each equation is a residual named after a state. States that are not
declared as free parameters are the dependent variables and are solved
for; everything else passes through unchanged.

Per call:
1. Apply fixed overrides
2. Warm-start the dependent variables from the last root (keep_root)
3. Solve the residuals for the dependent variables
4. Repair negative roots (positive): restart cold, clamp to zero, warn
5. Sensitivities by the implicit function theorem:
       df/dx · dx/dp = -df/dp   (linear solve, no inverse)
6. Chain with the Jacobian carried by the input

Mathematical Background
-----------------------
For f(x, p) = 0 with x the dependent variables and p everything else,
the root x*(p) satisfies

    dx*/dp = -(df/dx)^{-1} df/dp

evaluated at (x*, p). A singular df/dx means no local sensitivity exists.
"""

import logging
import warnings
from typing import Dict, List, Optional, Sequence

import numpy as np
from scipy import linalg

from partrafo.core.jacobian import Jacobian
from partrafo.core.parameter_vector import ParameterVector
from partrafo.exceptions import (
    MissingParameterError,
    NegativeRootWarning,
    NumericalError,
    SingularJacobianError,
)
from partrafo.symbolic.equations import EquationSetInput, as_equation_set
from partrafo.symbolic.validation import TransformationValidator
from partrafo.transforms.base import TransformationFunction, suffixed
from partrafo.transforms.guess_cache import GuessCache
from partrafo.types.backends import TransformMethod, backend_for
from partrafo.types.core import ParameterValues, RootFinder, RootResult
from partrafo.utils.codegen_utils import compile_equations
from partrafo.utils.root_finding import multiroot

logger = logging.getLogger(__name__)


def _unique(names: Sequence[str]) -> List[str]:
    out: List[str] = []
    for n in names:
        if n not in out:
            out.append(n)
    return out


class ImplicitTransformation(TransformationFunction):
    """
    Parameter transformation defined by the root of an equation system.

    The input must provide values for all states (the dependent ones
    serve as initial guess), for all other symbols of the equations, and
    for the free parameters.

    Attributes:
        states: Names of the equations
        dependent: States solved for (states minus free parameters)
        nonstates: Symbols of the equations that are not states
        sensitivity_parameters: nonstates followed by free parameters;
            the columns of d(dependent)/d(other)
        guess_cache: Last accepted root, used as warm start
        last_solve: RootResult of the last accepted solve
        positive: Repair negative roots. May be changed after construction.
        keep_root: Warm-start from the last root. May be changed after
            construction.

    Example:
        >>> f = {'A': '-k1*A + k2*B', 'B': 'k1*A - k2*B'}
        >>> steady = ImplicitTransformation(f, parameters=['A'])
        >>> out = steady({'k1': 1.0, 'k2': 0.1, 'A': 10.0, 'B': 1.0})
        >>> out['B']  # k1/k2 * A
        100.0
    """

    def __init__(
        self,
        equations: EquationSetInput,
        parameters: Optional[Sequence[str]] = None,
        positive: bool = True,
        keep_root: bool = True,
        condition: Optional[str] = None,
        compile: bool = False,
        model_name: Optional[str] = None,
        verbose: bool = False,
        root_finder: RootFinder = multiroot,
        **solver_options,
    ):
        equations = as_equation_set(equations)
        parameters = [] if parameters is None else list(parameters)
        TransformationValidator(equations, parameters, method=TransformMethod.IMPLICIT).validate()

        super().__init__(equations, parameters, condition=condition, model_name=model_name)

        self.states = list(equations.names)
        self.nonstates = equations.symbols(exclude=self.states)
        self.dependent = [s for s in self.states if s not in set(parameters)]
        self.sensitivity_parameters = _unique(self.nonstates + parameters)

        self.positive = positive
        self.keep_root = keep_root
        self.guess_cache = GuessCache()
        self.last_solve: Optional[RootResult] = None

        self._root_finder = root_finder
        self._solver_options = solver_options

        residuals = equations.subset(self.dependent)
        inputs = self.states + self.nonstates
        backend = backend_for(compile)

        self._residuals = compile_equations(
            residuals, inputs, backend=backend, name=self.model_name, verbose=verbose
        )
        self._dfdx = compile_equations(
            residuals.jacobian(self.dependent),
            inputs,
            backend=backend,
            name=suffixed(self.model_name, "dfdx"),
            verbose=verbose,
        )
        self._dfdp = compile_equations(
            residuals.jacobian(self.sensitivity_parameters),
            inputs,
            backend=backend,
            name=suffixed(self.model_name, "dfdp"),
            verbose=verbose,
        )

    # ========================================================================
    # Residuals (evaluated by name, so argument order never matters)
    # ========================================================================

    def _merge(self, x: np.ndarray, parms: ParameterValues) -> ParameterValues:
        values = dict(parms)
        values.update(zip(self.dependent, np.asarray(x, dtype=float)))
        return values

    def residuals(self, x: np.ndarray, parms: ParameterValues) -> np.ndarray:
        """Residuals of the dependent equations at dependent values x"""
        return self._residuals(self._merge(x, parms))[0]

    def residual_jacobian(self, x: np.ndarray, parms: ParameterValues) -> np.ndarray:
        """Square matrix d residuals / d dependent"""
        n = len(self.dependent)
        return self._dfdx(self._merge(x, parms))[0].reshape(n, n)

    # ========================================================================
    # Evaluation
    # ========================================================================

    def _solve(self, p: ParameterValues) -> RootResult:
        start = np.array([p[n] for n in self.dependent], dtype=float)
        parms = {n: v for n, v in p.items() if n not in self.dependent}
        return self._root_finder(
            self.residuals,
            start,
            parms,
            jacobian=self.residual_jacobian,
            positive=False,
            **self._solver_options,
        )

    def _transform(
        self,
        outer: ParameterVector,
        fixed: Optional[ParameterVector],
        want_deriv: bool,
    ) -> ParameterVector:
        # Fixed values replace outer ones and are appended last
        p = outer.to_dict()
        fixed_names: List[str] = []
        if fixed is not None:
            fixed_names = list(fixed.names)
            p = {n: v for n, v in p.items() if n not in fixed}
            p.update(fixed.to_dict())

        missing = [n for n in self.dependent if n not in p]
        if missing:
            raise MissingParameterError(missing, where="initial guess of implicit transformation")

        passthrough = [n for n in p if n not in self.dependent and n not in fixed_names]

        start_values = dict(p)
        guess = self.guess_cache.get()
        if guess is not None:
            for n in self.dependent:
                if n in guess:
                    p[n] = guess[n]

        solution = self._solve(p)
        root = solution["root"]
        repaired = False

        if self.positive and np.any(root < 0):
            logger.debug("Negative root %s, restarting from the caller's initial guess", root)
            p = start_values
            solution = self._solve(p)
            root = np.where(solution["root"] < 0, 0.0, solution["root"])
            repaired = True
            warnings.warn(
                "Found negative steady state. Negative elements have been set to 0.",
                NegativeRootWarning,
                stacklevel=3,
            )

        out: Dict[str, float] = dict(zip(self.dependent, root))
        out.update((n, v) for n, v in p.items() if n not in out)

        jacobian = None
        if want_deriv:
            local = self._local_jacobian(out, list(p), passthrough, fixed_names)
            jacobian = self._chain(local, outer)

        # Commit state only once the call has succeeded
        self.last_solve = solution
        if repaired:
            logger.debug("Guess cache reset after negative root repair")
            self.guess_cache.reset()
        elif self.keep_root:
            self.guess_cache.set(out)

        return ParameterVector(out, jacobian=jacobian)

    def _local_jacobian(
        self,
        out: ParameterValues,
        inputs: List[str],
        passthrough: List[str],
        fixed_names: List[str],
    ) -> Jacobian:
        """
        d out / d inputs at the root.

        Pass-through rows are identity rows, dependent rows hold the
        implicit function theorem solution, fixed columns are dropped.
        """
        rows = list(out)
        row_index = {n: i for i, n in enumerate(rows)}
        col_index = {n: j for j, n in enumerate(inputs)}

        matrix = np.zeros((len(rows), len(inputs)))
        for n in passthrough:
            matrix[row_index[n], col_index[n]] = 1.0

        if self.dependent:
            dxdp = self._sensitivities(out)
            cols = [j for j, n in enumerate(self.sensitivity_parameters) if n in col_index]
            matrix[
                np.ix_(
                    [row_index[n] for n in self.dependent],
                    [col_index[self.sensitivity_parameters[j]] for j in cols],
                )
            ] = dxdp[:, cols]

        return Jacobian(matrix, rows, inputs).drop_cols(fixed_names)

    def _sensitivities(self, values: ParameterValues) -> np.ndarray:
        """Solve df/dx · X = -df/dp at the root"""
        n = len(self.dependent)
        dfdx = self._dfdx(values)[0].reshape(n, n)
        dfdp = self._dfdp(values)[0].reshape(n, len(self.sensitivity_parameters))

        if not (np.all(np.isfinite(dfdx)) and np.all(np.isfinite(dfdp))):
            raise NumericalError("Residual derivatives are not finite at the root")

        try:
            return linalg.solve(dfdx, -dfdp)
        except linalg.LinAlgError as e:
            raise SingularJacobianError(
                f"Residual Jacobian w.r.t. {self.dependent} is singular at the root; "
                f"no local sensitivity exists",
            ) from e


def build_implicit(
    equations: EquationSetInput,
    parameters: Optional[Sequence[str]] = None,
    positive: bool = True,
    keep_root: bool = True,
    condition: Optional[str] = None,
    compile: bool = False,
    model_name: Optional[str] = None,
    verbose: bool = False,
    root_finder: RootFinder = multiroot,
    **solver_options,
) -> ImplicitTransformation:
    """
    Build an implicit parameter transformation.

    Args:
        equations: Residuals named after the states they determine
        parameters: Free parameters. States listed here are not solved for.
        positive: Restart and clamp to zero if the root has negative entries
        keep_root: Warm-start each solve from the previous root
        condition: Condition label, qualifies model_name
        compile: JIT-compile the evaluators (JAX backend)
        model_name: Base name of the generated evaluators
        verbose: Print compilation progress
        root_finder: Root-finding routine, see multiroot
        **solver_options: Passed to the root-finder (maxiter, tol, atol, method)

    Returns:
        ImplicitTransformation

    Raises:
        RootFindingError: If the root-finder fails (at call time)
        SingularJacobianError: If the residual Jacobian is singular at the
            root (at call time, only when the Jacobian is requested)

    Note:
        With ``want_deriv=False`` the sensitivity solve is skipped, so a
        singular residual Jacobian at the root goes undetected and the
        root is returned as found.

    Example:
        >>> f = EquationSet({'A': '-k1*A + k2*B', 'B': 'k1*A - k2*B'})
        >>> f = f.replace({'B': 'A + B - total'})
        >>> steady = build_implicit(f, parameters=['total'])
        >>> out = steady({'k1': 1, 'k2': 2, 'A': 5, 'B': 5, 'total': 3})
        >>> round(out['A'], 6), round(out['B'], 6)
        (2.0, 1.0)
    """
    return ImplicitTransformation(
        equations,
        parameters=parameters,
        positive=positive,
        keep_root=keep_root,
        condition=condition,
        compile=compile,
        model_name=model_name,
        verbose=verbose,
        root_finder=root_finder,
        **solver_options,
    )
