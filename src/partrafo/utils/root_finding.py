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
Root finding for implicit transformations.

Thin wrapper around scipy.optimize.root with the calling convention used
by the implicit builder:

    multiroot(f, start, parms) -> RootResult

where f(x, parms) returns the residuals for the dependent values x given
the auxiliary values parms (a name → value mapping).

A result is accepted if the solver reports success or if the residuals at
the returned point are within ``atol``. MINPACK's hybrid method reports
"not making good progress" once it sits on a root at machine precision,
so the residual test is what accepts such roots. Anything else raises
RootFindingError.
The iteration cap is the solver's own budget (maxfev for hybr, maxiter
for lm), scaled by ``maxiter``.
"""

import logging
from typing import Optional

import numpy as np
from scipy import optimize

from partrafo.exceptions import RootFindingError
from partrafo.types.core import ParameterValues, ResidualFunction, ResidualJacobian, RootResult

logger = logging.getLogger(__name__)

SUPPORTED_METHODS = ("hybr", "lm")

# Name of the evaluation budget option per scipy method
_BUDGET_OPTION = {"hybr": "maxfev", "lm": "maxiter"}


def multiroot(
    f: ResidualFunction,
    start: np.ndarray,
    parms: ParameterValues,
    jacobian: Optional[ResidualJacobian] = None,
    positive: bool = False,
    maxiter: int = 100,
    tol: float = 1e-10,
    atol: float = 1e-8,
    method: str = "hybr",
) -> RootResult:
    """
    Find x with f(x, parms) = 0.

    Args:
        f: Residual function f(x, parms) -> (n,)
        start: Initial guess (n,)
        parms: Auxiliary values passed through to f
        jacobian: Optional analytic Jacobian J(x, parms) -> (n, n)
        positive: Restrict the search to x >= 0 by solving for y with
            x = |y|
        maxiter: Evaluation budget per unknown
        tol: Relative tolerance between iterates
        atol: Absolute residual tolerance accepting a root the solver
            did not flag as converged
        method: 'hybr' (Powell hybrid, default) or 'lm' (Levenberg-Marquardt)

    Returns:
        RootResult

    Raises:
        RootFindingError: If the solver does not report convergence and the
            residuals exceed atol, or if the residuals are not finite
        ValueError: If method is unknown

    Example:
        >>> f = lambda x, p: x**2 - p['a']
        >>> multiroot(f, np.array([1.0]), {'a': 4.0})['root']
        array([2.])
    """
    if method not in SUPPORTED_METHODS:
        raise ValueError(f"Unknown root-finding method '{method}'. Available: {SUPPORTED_METHODS}")

    start = np.atleast_1d(np.asarray(start, dtype=float))
    n = start.size

    if n == 0:
        return RootResult(
            root=start.copy(),
            f_root=np.zeros(0),
            converged=True,
            nfev=0,
            start=start.copy(),
            message="No unknowns",
        )

    if positive:

        def fun(y):
            return f(np.abs(y), parms)

        jac = None
        if jacobian is not None:

            def jac(y):
                # Chain rule through |y|; sign(0) taken as +1
                return jacobian(np.abs(y), parms) * np.where(y < 0, -1.0, 1.0)

    else:

        def fun(x):
            return f(x, parms)

        jac = None if jacobian is None else (lambda x: jacobian(x, parms))

    sol = optimize.root(
        fun,
        start,
        jac=jac,
        method=method,
        options={"xtol": tol, _BUDGET_OPTION[method]: maxiter * (n + 1)},
    )

    root = np.abs(sol.x) if positive else np.asarray(sol.x, dtype=float)
    f_root = np.asarray(f(root, parms), dtype=float)
    nfev = int(getattr(sol, "nfev", 0))

    logger.debug("Root finder (%s) finished after %d evaluations: %s", method, nfev, sol.message)

    finite = bool(np.all(np.isfinite(f_root)))
    small = finite and (f_root.size == 0 or float(np.max(np.abs(f_root))) <= atol)
    if not finite or not (sol.success or small):
        raise RootFindingError(
            f"Root finding did not converge after {nfev} evaluations "
            f"(start={start.tolist()}): {sol.message}",
        )

    return RootResult(
        root=root,
        f_root=f_root,
        converged=bool(sol.success),
        nfev=nfev,
        start=start.copy(),
        message=str(sol.message),
    )
