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
Equation set code generation.

Turns an EquationSet into a numeric evaluator:

    evaluate(values: Mapping[name, number]) -> matrix (n_rows, n_outputs)

Backends:
- NumPy: plain lambdify (reference, default)
- JAX: lambdify against jax.numpy followed by jax.jit, used when a
  transformation is built with compile=True

Shape Convention:
    Evaluators always return 2D float64 arrays. Scalar inputs give one
    row; 1D array inputs of length n give n rows (vectorised evaluation).
    Constant expressions (e.g. zero derivatives) are broadcast to all rows.
"""

import inspect
import time
from typing import Callable, List, Optional, Sequence

import numpy as np
import sympy as sp

from partrafo.exceptions import MissingParameterError, UnresolvedSymbolError
from partrafo.symbolic.equations import EquationSet, as_equation_set, symbol
from partrafo.types.backends import DEFAULT_BACKEND, Backend
from partrafo.types.core import EvaluationMatrix, ParameterInput

# Helper functions


def _numpy_min(*args):
    """
    Handle SymPy Min for NumPy backend.

    SymPy's Min can take arbitrary number of arguments: Min(x, y, z)
    NumPy's np.minimum only takes 2 arguments.

    Examples:
        >>> _numpy_min(1, 2, 3)
        1
        >>> _numpy_min(np.array([1, 2]), np.array([3, 0]))
        array([1, 0])
    """
    if len(args) == 0:
        raise ValueError("Min requires at least one argument")
    result = args[0]
    for arg in args[1:]:
        result = np.minimum(result, arg)
    return result


def _numpy_max(*args):
    """
    Handle SymPy Max for NumPy backend.

    Examples:
        >>> _numpy_max(1, 2, 3)
        3
    """
    if len(args) == 0:
        raise ValueError("Max requires at least one argument")
    result = args[0]
    for arg in args[1:]:
        result = np.maximum(result, arg)
    return result


def _jax_min(*args):
    """Handle SymPy Min for JAX backend."""
    import jax.numpy as jnp

    if len(args) == 0:
        raise ValueError("Min requires at least one argument")
    result = args[0]
    for arg in args[1:]:
        result = jnp.minimum(result, arg)
    return result


def _jax_max(*args):
    """Handle SymPy Max for JAX backend."""
    import jax.numpy as jnp

    if len(args) == 0:
        raise ValueError("Max requires at least one argument")
    result = args[0]
    for arg in args[1:]:
        result = jnp.maximum(result, arg)
    return result


SYMPY_TO_NUMPY_LAMBDIFY = {
    "Min": _numpy_min,
    "Max": _numpy_max,
}

SYMPY_TO_JAX_LAMBDIFY = {
    "Min": _jax_min,
    "Max": _jax_max,
}


def _row_shape(args) -> tuple:
    """Common broadcast shape of the evaluator arguments: () or (n,)"""
    shape = np.broadcast_shapes(*(np.shape(a) for a in args)) if args else ()
    if len(shape) > 1:
        raise ValueError(f"Evaluator inputs must be scalars or 1D arrays, got shape {shape}")
    return shape


def generate_numpy_function(exprs: List[sp.Expr], symbols: List[sp.Symbol]) -> Callable:
    """
    Generate a NumPy function from a list of SymPy expressions.

    Args:
        exprs: Expressions, one per output column
        symbols: Input symbols in positional order

    Returns:
        Function f(*args) -> ndarray of shape (n_rows, len(exprs))
    """
    func = sp.lambdify(symbols, list(exprs), modules=[SYMPY_TO_NUMPY_LAMBDIFY, "numpy"])

    def wrapped_func(*args):
        shape = _row_shape(args)
        results = func(*args)

        columns = [np.broadcast_to(np.asarray(r, dtype=float), shape) for r in results]
        if not columns:
            return np.zeros((int(np.prod(shape)) if shape else 1, 0))
        return np.stack(columns, axis=-1).reshape(-1, len(columns))

    wrapped_func.lambdified = func
    return wrapped_func


def generate_jax_function(
    exprs: List[sp.Expr],
    symbols: List[sp.Symbol],
    jit: bool = True,
) -> Callable:
    """
    Generate a JAX function from a list of SymPy expressions.

    Double precision is switched on for JAX: the root-finder and the
    implicit function theorem step are not usable in float32.

    Args:
        exprs: Expressions, one per output column
        symbols: Input symbols in positional order
        jit: Whether to JIT-compile the function (default: True)

    Returns:
        Function f(*args) -> jax array of shape (n_rows, len(exprs))
    """
    import jax
    import jax.numpy as jnp

    jax.config.update("jax_enable_x64", True)

    func = sp.lambdify(symbols, list(exprs), modules=[SYMPY_TO_JAX_LAMBDIFY, "jax"])

    def wrapped_func(*args):
        shape = _row_shape(args)
        results = func(*args)

        columns = [jnp.broadcast_to(jnp.asarray(r, dtype=jnp.float64), shape) for r in results]
        if not columns:
            return jnp.zeros((int(np.prod(shape)) if shape else 1, 0))
        return jnp.stack(columns, axis=-1).reshape(-1, len(columns))

    wrapped_func.lambdified = func
    return jax.jit(wrapped_func) if jit else wrapped_func


def generate_function(
    exprs: List[sp.Expr],
    symbols: List[sp.Symbol],
    backend: Backend = DEFAULT_BACKEND,
    **kwargs,
) -> Callable:
    """
    Generate a function from SymPy expressions for specified backend.

    Args:
        exprs: Expressions, one per output column
        symbols: Input symbols in order
        backend: 'numpy' or 'jax'
        **kwargs: Backend-specific options (e.g., jit=True for JAX)

    Returns:
        Function returning a (n_rows, len(exprs)) matrix

    Examples:
        >>> x, y = sp.symbols('x y')
        >>> f = generate_function([x**2 + y**2, x*y], [x, y])
        >>> f(3.0, 4.0)
        array([[25., 12.]])
    """
    if backend == "numpy":
        return generate_numpy_function(exprs, symbols)
    elif backend == "jax":
        return generate_jax_function(exprs, symbols, **kwargs)
    else:
        raise ValueError(f"Unknown backend: {backend}")


# ============================================================================
# Named Evaluators
# ============================================================================


class CompiledEquations:
    """
    Numeric evaluator for an equation set.

    Values are looked up by name, so callers never depend on the
    positional order of the underlying generated function.

    Example:
        >>> f = compile_equations({'k': 'exp(logk)'}, ['logk'])
        >>> f({'logk': 0.0})
        array([[1.]])
        >>> f({'logk': np.array([0.0, 1.0])}).shape
        (2, 1)
    """

    def __init__(
        self,
        equations: EquationSet,
        parameters: Sequence[str],
        func: Callable,
        backend: Backend,
        name: Optional[str] = None,
    ):
        self.equations = equations
        self.outputs = equations.names
        self.parameters = tuple(parameters)
        self.backend = backend
        self.name = name
        self._func = func

    def __call__(self, values: ParameterInput) -> EvaluationMatrix:
        missing = [p for p in self.parameters if p not in values]
        if missing:
            raise MissingParameterError(missing, where=self.name)
        args = [np.asarray(values[p], dtype=float) for p in self.parameters]
        return np.asarray(self._func(*args), dtype=float)

    @property
    def source(self) -> str:
        """Generated Python source of the lambdified function"""
        return inspect.getsource(inspect.unwrap(self._func).lambdified)

    def __repr__(self) -> str:
        label = f" '{self.name}'" if self.name else ""
        return (
            f"CompiledEquations{label}({len(self.outputs)} outputs, "
            f"{len(self.parameters)} parameters, backend={self.backend})"
        )


def compile_equations(
    equations,
    parameters: Sequence[str],
    backend: Backend = DEFAULT_BACKEND,
    name: Optional[str] = None,
    verbose: bool = False,
    **kwargs,
) -> CompiledEquations:
    """
    Compile an equation set into a named evaluator.

    Args:
        equations: EquationSet or anything coercible to one
        parameters: Names the evaluator takes as input
        backend: 'numpy' or 'jax'
        name: Evaluator name (artefact naming only)
        verbose: Print compilation progress
        **kwargs: Backend-specific options passed to generate_function

    Returns:
        CompiledEquations

    Raises:
        UnresolvedSymbolError: If an expression references a symbol
            that is not in ``parameters``
    """
    equations = as_equation_set(equations)
    parameters = list(parameters)

    unresolved = equations.symbols(exclude=parameters)
    if unresolved:
        raise UnresolvedSymbolError(unresolved, parameters)

    start = time.time()
    if verbose:
        print(f"Compiling {name or 'equations'} ({backend})...", end=" ", flush=True)

    func = generate_function(equations.sympy(), [symbol(p) for p in parameters], backend=backend, **kwargs)

    if not callable(func):
        raise RuntimeError(f"generate_function returned non-callable object: {type(func)}")

    if verbose:
        print(f"{time.time() - start:.2f}s")

    return CompiledEquations(equations, parameters, func, backend, name=name)
