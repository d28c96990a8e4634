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
Parameter Transformations
=========================

Explicit
--------
>>> from partrafo.transforms import build_explicit
>>>
>>> p_log = build_explicit({'k1': 'exp(logk1)', 'k2': 'exp(logk2)'})
>>> out = p_log({'logk1': 1.0, 'logk2': -1.0})
>>> out.jacobian  # d(k1, k2) / d(logk1, logk2)

Implicit
--------
>>> from partrafo.transforms import build_implicit
>>>
>>> steady = build_implicit({'A': '-k1*A + k2*B', 'B': 'k1*A - k2*B'}, ['A'])
>>> steady({'k1': 1.0, 'k2': 0.1, 'A': 10.0, 'B': 1.0})

Composition
-----------
>>> from partrafo.transforms import compose
>>>
>>> p = compose(steady, p_log)      # steady after p_log
>>> p = p_log.then(steady)          # same
"""

from .base import TransformationFunction
from .builder import build_transformation
from .composition import ComposedTransformation, compose
from .explicit import ExplicitTransformation, build_explicit
from .guess_cache import GuessCache
from .implicit import ImplicitTransformation, build_implicit

__all__ = [
    "ComposedTransformation",
    "ExplicitTransformation",
    "GuessCache",
    "ImplicitTransformation",
    "TransformationFunction",
    "build_explicit",
    "build_implicit",
    "build_transformation",
    "compose",
]
