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
Explicit Parameter Transformations

Inner parameters are given directly as expressions of outer parameters:

    logtrafo = {'k1': 'exp(logk1)', 'k2': 'exp(logk2)',
                'A': 'exp(logA)', 'B': 'exp(logB)'}

Construction derives the symbolic Jacobian of the equations with respect
to the declared parameters and compiles evaluators for both. Each call
evaluates the inner values and, if requested, the Jacobian, chained with
the Jacobian carried by the input.
"""

from typing import List, Optional, Sequence

import numpy as np

from partrafo.core.jacobian import Jacobian
from partrafo.core.parameter_vector import ParameterVector
from partrafo.exceptions import DuplicateOutputError
from partrafo.symbolic.equations import EquationSetInput, as_equation_set
from partrafo.symbolic.validation import TransformationValidator
from partrafo.transforms.base import TransformationFunction, suffixed
from partrafo.types.backends import TransformMethod, backend_for
from partrafo.utils.codegen_utils import compile_equations


class ExplicitTransformation(TransformationFunction):
    """
    Parameter transformation by direct substitution.

    If ``parameters`` is given, every declared parameter that the equations
    do not reference is passed through by an identity equation, so the
    output provides a value for it.

    Attributes:
        attach_input: Append outer parameters that are not outputs to the
            result. May be changed after construction.

    Example:
        >>> p_log = ExplicitTransformation({'k1': 'exp(logk1)', 'A': 'exp(logA)'})
        >>> out = p_log({'logk1': 0.0, 'logA': 1.0})
        >>> out['k1']
        1.0
        >>> out.jacobian['A', 'logA']  # exp(1)
        2.718281828459045
    """

    def __init__(
        self,
        equations: EquationSetInput,
        parameters: Optional[Sequence[str]] = None,
        attach_input: bool = False,
        condition: Optional[str] = None,
        compile: bool = False,
        model_name: Optional[str] = None,
        verbose: bool = False,
    ):
        equations = as_equation_set(equations)
        TransformationValidator(equations, parameters, method=TransformMethod.EXPLICIT).validate()

        symbols = equations.symbols()
        if parameters is None:
            parameters = symbols
        else:
            parameters = list(parameters)
            identity = [p for p in parameters if p not in symbols]
            clash = [p for p in identity if p in equations]
            if clash:
                raise DuplicateOutputError(clash, context="identity fallback for declared parameters")
            if identity:
                equations = equations.concat({p: p for p in identity})

        super().__init__(equations, parameters, condition=condition, model_name=model_name)

        self.attach_input = attach_input

        backend = backend_for(compile)
        self._evaluate = compile_equations(
            equations,
            self.parameters,
            backend=backend,
            name=self.model_name,
            verbose=verbose,
        )
        self._evaluate_deriv = compile_equations(
            equations.jacobian(self.parameters),
            self.parameters,
            backend=backend,
            name=suffixed(self.model_name, "deriv"),
            verbose=verbose,
        )

    def _transform(
        self,
        outer: ParameterVector,
        fixed: Optional[ParameterVector],
        want_deriv: bool,
    ) -> ParameterVector:
        fixed_names = [] if fixed is None else list(fixed.names)

        # fixed values override and extend the outer ones
        args = outer.to_dict()
        if fixed is not None:
            args.update(fixed.to_dict())

        outputs = self.equations.names
        values = self._evaluate(args)[0]

        jacobian = None
        if want_deriv:
            jacobian = self._chain(self._local_jacobian(args, fixed_names), outer)

        inner = ParameterVector(zip(outputs, values), jacobian=jacobian)

        if self.attach_input:
            unmapped = [n for n in outer.names if n not in outputs]
            if unmapped:
                inner = inner.concat(self._attached(outer, unmapped, fixed_names, want_deriv))

        return inner

    def _local_jacobian(self, args: dict, fixed_names: List[str]) -> Jacobian:
        """d inner / d args, without the columns of fixed parameters"""
        outputs = self.equations.names
        cols = list(args)

        deriv = self._evaluate_deriv(args)[0].reshape(len(outputs), len(self.parameters))

        matrix = np.zeros((len(outputs), len(cols)))
        matrix[:, [cols.index(p) for p in self.parameters]] = deriv

        return Jacobian(matrix, outputs, cols).drop_cols(fixed_names)

    @staticmethod
    def _attached(
        outer: ParameterVector,
        names: List[str],
        fixed_names: List[str],
        want_deriv: bool,
    ) -> ParameterVector:
        """Unmapped input values, carrying their own sensitivities"""
        values = [(n, outer[n]) for n in names]
        if not want_deriv:
            return ParameterVector(values)
        if outer.jacobian is not None:
            return ParameterVector(values, jacobian=outer.jacobian.submatrix(rows=names))
        return ParameterVector(values, jacobian=Jacobian.identity(names).drop_cols(fixed_names))


def build_explicit(
    equations: EquationSetInput,
    parameters: Optional[Sequence[str]] = None,
    attach_input: bool = False,
    condition: Optional[str] = None,
    compile: bool = False,
    model_name: Optional[str] = None,
    verbose: bool = False,
) -> ExplicitTransformation:
    """
    Build an explicit parameter transformation.

    Args:
        equations: Inner parameter names mapped to expressions of the
            outer parameters
        parameters: Outer parameter names. Defaults to the symbols of the
            equations. Names not referenced by the equations are passed
            through by identity equations.
        attach_input: Append unmapped outer parameters to the result
        condition: Condition label, qualifies model_name
        compile: JIT-compile the evaluators (JAX backend)
        model_name: Base name of the generated evaluators
        verbose: Print compilation progress

    Returns:
        ExplicitTransformation

    Raises:
        DuplicateOutputError: If an identity fallback collides with an output
        UnresolvedSymbolError: If the equations reference undeclared symbols
        ValidationError: If the definition is otherwise invalid

    Example:
        >>> p_log = build_explicit({'k1': 'exp(logk1)'}, parameters=['logk1', 'A'])
        >>> list(p_log({'logk1': 0.0, 'A': 3.0}).items())
        [('k1', 1.0), ('A', 3.0)]
    """
    return ExplicitTransformation(
        equations,
        parameters=parameters,
        attach_input=attach_input,
        condition=condition,
        compile=compile,
        model_name=model_name,
        verbose=verbose,
    )
