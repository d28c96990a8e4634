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
Jacobian-carrying parameter vectors.

A ParameterVector is the value passed into and out of every
transformation: an ordered name → value mapping together with an
optional Jacobian describing its sensitivity to some upstream
reference parameterisation.

- jacobian is None: no known upstream sensitivity, nothing to chain
- jacobian is set: rows are (a subset of) this vector's names, columns
  are the reference parameter names

Transformations read the incoming Jacobian to apply the chain rule and
attach the outgoing one, so sensitivities travel with the values.

Usage
-----
>>> p = ParameterVector({'logk1': 1.0, 'logk2': -1.0})
>>> p.jacobian is None
True
>>> p = p.with_identity()
>>> p.jacobian.cols
('logk1', 'logk2')
"""

from typing import Dict, Iterable, Iterator, Mapping, Optional, Tuple, Union

import numpy as np

from partrafo.core.jacobian import Jacobian
from partrafo.types.core import ParameterValues

ParameterVectorInput = Union["ParameterVector", Mapping[str, float], Iterable[Tuple[str, float]]]


class ParameterVector(Mapping[str, float]):
    """
    Ordered, read-only parameter values with an optional Jacobian.

    Example:
        >>> p = ParameterVector({'a': 1.0, 'b': 2.0}, jacobian=Jacobian.identity(['a', 'b']))
        >>> p['b']
        2.0
        >>> p.names
        ('a', 'b')
    """

    def __init__(self, values: Optional[ParameterVectorInput] = None, jacobian: Optional[Jacobian] = None):
        if isinstance(values, ParameterVector):
            self._values: Dict[str, float] = dict(values._values)
        else:
            self._values = {}
            pairs = () if values is None else (values.items() if isinstance(values, Mapping) else values)
            for name, value in pairs:
                if name in self._values:
                    raise ValueError(f"Parameter '{name}' given more than once")
                self._values[name] = float(value)

        if jacobian is not None:
            unknown = [r for r in jacobian.rows if r not in self._values]
            if unknown:
                raise ValueError(f"Jacobian rows {unknown} are not parameters of the vector")
        self._jacobian = jacobian

    # ========================================================================
    # Mapping Interface
    # ========================================================================

    def __getitem__(self, name: str) -> float:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._values)

    @property
    def jacobian(self) -> Optional[Jacobian]:
        """Sensitivity w.r.t. the upstream reference, or None"""
        return self._jacobian

    def to_dict(self) -> ParameterValues:
        return dict(self._values)

    def to_array(self) -> np.ndarray:
        return np.array(list(self._values.values()), dtype=float)

    # ========================================================================
    # Derived Vectors
    # ========================================================================

    def with_jacobian(self, jacobian: Optional[Jacobian]) -> "ParameterVector":
        """Same values, different Jacobian"""
        return ParameterVector(self, jacobian=jacobian)

    def without_jacobian(self) -> "ParameterVector":
        return ParameterVector(self)

    def with_identity(self) -> "ParameterVector":
        """Attach d p / d p, making this vector the reference parameterisation"""
        return ParameterVector(self, jacobian=Jacobian.identity(self.names))

    def subset(self, names: Iterable[str]) -> "ParameterVector":
        """
        Values and Jacobian rows for the given names.

        Raises:
            KeyError: If a name is not a parameter of the vector
        """
        names = list(names)
        missing = [n for n in names if n not in self._values]
        if missing:
            raise KeyError(f"Parameters not in vector: {missing}")
        jacobian = None
        if self._jacobian is not None:
            jacobian = self._jacobian.submatrix(rows=[n for n in names if n in self._jacobian.rows])
        return ParameterVector(((n, self._values[n]) for n in names), jacobian=jacobian)

    def concat(self, other: ParameterVectorInput) -> "ParameterVector":
        """
        Append the parameters of another vector.

        Values are appended in order. If either vector carries a Jacobian,
        the result carries both stacked (column union, zero fill).

        Raises:
            ValueError: If both vectors define the same name
        """
        other = as_parameter_vector(other)
        clash = [n for n in other.names if n in self._values]
        if clash:
            raise ValueError(f"Cannot concatenate parameter vectors with common names {clash}")

        values = list(self._values.items()) + list(other._values.items())

        jacobians = [j for j in (self._jacobian, other._jacobian) if j is not None]
        if not jacobians:
            return ParameterVector(values)
        jacobian = jacobians[0] if len(jacobians) == 1 else jacobians[0].stack(jacobians[1])
        return ParameterVector(values, jacobian=jacobian)

    __add__ = concat

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ParameterVector):
            return self._values == other._values and self._jacobian == other._jacobian
        if isinstance(other, Mapping):
            return self._values == dict(other)
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        if not self._values:
            return "ParameterVector()"
        width = max(len(n) for n in self._values)
        lines = [f"{n:<{width}} = {v:.6g}" for n, v in self._values.items()]
        if self._jacobian is not None:
            lines.append(f"<jacobian {self._jacobian.shape[0]} x {self._jacobian.shape[1]}>")
        return "\n".join(lines)


def as_parameter_vector(values: ParameterVectorInput) -> ParameterVector:
    """Coerce a mapping or sequence of pairs to a ParameterVector"""
    if isinstance(values, ParameterVector):
        return values
    return ParameterVector(values)
