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

from typing import Dict, Mapping, Optional


class GuessCache:
    """
    Last accepted root of an implicit transformation.

    Owned by a single ImplicitTransformation. Not thread-safe: concurrent
    calls of the same transformation must be serialized by the caller or
    run with keep_root=False.
    """

    def __init__(self):
        self._guess: Optional[Dict[str, float]] = None

    def get(self) -> Optional[Dict[str, float]]:
        """Copy of the cached solution, or None if empty"""
        return None if self._guess is None else dict(self._guess)

    def set(self, solution: Mapping[str, float]):
        self._guess = {n: float(v) for n, v in solution.items()}

    def reset(self):
        self._guess = None

    @property
    def is_empty(self) -> bool:
        return self._guess is None

    def __repr__(self) -> str:
        if self._guess is None:
            return "GuessCache(empty)"
        return f"GuessCache({self._guess})"
