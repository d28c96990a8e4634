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
Transformation builder dispatch.

    build_transformation(equations, parameters, method='explicit', **options)

selects between the explicit and implicit builders. Options are checked
against the chosen strategy, so e.g. ``keep_root`` on an explicit
transformation is an error rather than silently ignored.
"""

from typing import Callable, Dict, FrozenSet, Optional, Sequence, Union

from typing_extensions import Unpack

from partrafo.symbolic.equations import EquationSetInput
from partrafo.transforms.base import TransformationFunction
from partrafo.transforms.explicit import build_explicit
from partrafo.transforms.implicit import build_implicit
from partrafo.types.backends import TransformMethod
from partrafo.types.core import TransformOptions

_COMMON_OPTIONS = frozenset({"condition", "compile", "model_name", "verbose"})

_OPTIONS: Dict[TransformMethod, FrozenSet[str]] = {
    TransformMethod.EXPLICIT: _COMMON_OPTIONS | {"attach_input"},
    TransformMethod.IMPLICIT: _COMMON_OPTIONS
    | {"keep_root", "positive", "root_finder", "maxiter", "tol", "atol"},
}

_BUILDERS: Dict[TransformMethod, Callable[..., TransformationFunction]] = {
    TransformMethod.EXPLICIT: build_explicit,
    TransformMethod.IMPLICIT: build_implicit,
}


def build_transformation(
    equations: EquationSetInput,
    parameters: Optional[Sequence[str]] = None,
    method: Union[TransformMethod, str] = TransformMethod.EXPLICIT,
    **options: Unpack[TransformOptions],
) -> TransformationFunction:
    """
    Build a parameter transformation.

    Args:
        equations: Equation set (explicit: inner parameter expressions,
            implicit: residuals named after states)
        parameters: Explicit: outer parameters. Implicit: free parameters.
        method: TransformMethod or its value ('explicit' / 'implicit')
        **options: Strategy options, see TransformOptions. Implicit
            transformations also accept root_finder and the root-finder
            settings maxiter, tol and atol; the solver method is only
            selectable through build_implicit.

    Returns:
        TransformationFunction

    Raises:
        ValueError: If method is unknown
        TypeError: If an option does not apply to the chosen method

    Example:
        >>> p_log = build_transformation({'k': 'exp(logk)'})
        >>> steady = build_transformation(
        ...     {'A': '-k1*A + k2*B', 'B': 'k1*A - k2*B'}, ['A'], method='implicit'
        ... )
    """
    method = TransformMethod(method)

    unknown = sorted(set(options) - _OPTIONS[method])
    if unknown:
        raise TypeError(
            f"Options {unknown} do not apply to {method.value} transformations. "
            f"Available: {sorted(_OPTIONS[method])}",
        )

    return _BUILDERS[method](equations, parameters, **options)
