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
Numerical Utilities
===================

Code Generation
---------------
>>> from partrafo.utils import compile_equations
>>>
>>> f = compile_equations({'k': 'exp(logk)'}, ['logk'])
>>> f({'logk': 0.0})
array([[1.]])
>>>
>>> # JIT-compiled with JAX
>>> f_jax = compile_equations({'k': 'exp(logk)'}, ['logk'], backend='jax')

Root Finding
------------
>>> from partrafo.utils import multiroot
>>>
>>> result = multiroot(lambda x, p: x - p['a'], np.zeros(1), {'a': 2.0})
>>> result['root']
array([2.])
"""

from .codegen_utils import (
    CompiledEquations,
    compile_equations,
    generate_function,
    generate_jax_function,
    generate_numpy_function,
)
from .root_finding import multiroot

__all__ = [
    "CompiledEquations",
    "compile_equations",
    "generate_function",
    "generate_jax_function",
    "generate_numpy_function",
    "multiroot",
]
