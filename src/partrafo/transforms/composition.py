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
Composition of parameter transformations.

compose(outer, inner) applies ``inner`` first and feeds its output,
Jacobian included, into ``outer``. Since every transformation chains
with the Jacobian carried by its input, the composed Jacobian is

    J_outer(inner(p)) @ J_inner(p)

i.e. the sensitivity of the final output to the original input of
``inner``.
"""

from typing import Optional

from partrafo.core.parameter_vector import ParameterVector
from partrafo.transforms.base import TransformationFunction


class ComposedTransformation(TransformationFunction):
    """
    ``outer`` applied after ``inner``.

    Declared parameters are those of ``inner``. ``fixed`` is handed to
    both stages.
    """

    def __init__(self, outer: TransformationFunction, inner: TransformationFunction):
        if outer.condition is not None and inner.condition is not None and outer.condition != inner.condition:
            raise ValueError(
                f"Cannot compose transformations for different conditions "
                f"'{outer.condition}' and '{inner.condition}'",
            )
        condition = outer.condition if outer.condition is not None else inner.condition

        super().__init__(None, inner.parameters, condition=condition)
        self.outer = outer
        self.inner = inner

    def _transform(
        self,
        outer: ParameterVector,
        fixed: Optional[ParameterVector],
        want_deriv: bool,
    ) -> ParameterVector:
        intermediate = self.inner(outer, fixed=fixed, want_deriv=want_deriv)
        return self.outer(intermediate, fixed=fixed, want_deriv=want_deriv)

    def __repr__(self) -> str:
        return f"ComposedTransformation({self.outer!r} after {self.inner!r})"


def compose(outer: TransformationFunction, inner: TransformationFunction) -> ComposedTransformation:
    """
    Compose two transformations: ``outer(inner(p))``.

    Args:
        outer: Transformation applied second
        inner: Transformation applied first

    Returns:
        ComposedTransformation whose Jacobian is taken w.r.t. the input of
        ``inner``

    Raises:
        ValueError: If both transformations carry different conditions

    Example:
        >>> steady = build_implicit({'A': '-k1*A + k2*B', 'B': 'k1*A - k2*B'}, ['A'])
        >>> p_log = build_explicit({'k1': 'exp(logk1)', 'k2': 'exp(logk2)',
        ...                         'A': 'exp(logA)', 'B': 'exp(logB)'})
        >>> p = compose(steady, p_log)
        >>> p({'logk1': 1, 'logk2': -1, 'logA': 0, 'logB': 0}).jacobian.cols
        ('logk1', 'logk2', 'logA', 'logB')
    """
    return ComposedTransformation(outer, inner)
