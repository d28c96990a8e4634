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

"""Centralized type definitions for partrafo."""

from .backends import DEFAULT_BACKEND, Backend, TransformMethod, backend_for
from .core import (
    EvaluationMatrix,
    ParameterInput,
    ParameterName,
    ParameterValues,
    ResidualFunction,
    ResidualJacobian,
    RootFinder,
    RootResult,
    TransformOptions,
)

__all__ = [
    "Backend",
    "DEFAULT_BACKEND",
    "TransformMethod",
    "backend_for",
    "EvaluationMatrix",
    "ParameterInput",
    "ParameterName",
    "ParameterValues",
    "ResidualFunction",
    "ResidualJacobian",
    "RootFinder",
    "RootResult",
    "TransformOptions",
]
