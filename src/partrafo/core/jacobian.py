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
Labelled Jacobian matrices.

A Jacobian is a dense float matrix whose rows are named after the
parameters of a ParameterVector and whose columns are named after the
parameters it is differentiated against (the current input, or an
upstream reference parameterisation after chaining).

Chain rule:
    J_total = J_local @ J_upstream.submatrix(rows=J_local.cols)
"""

from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np


def _unique(names: Iterable[str], what: str) -> Tuple[str, ...]:
    names = tuple(names)
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ValueError(f"Jacobian {what} labels must be unique, duplicates: {dupes}")
    return names


class Jacobian:
    """
    Dense matrix with row and column labels.

    Example:
        >>> J = Jacobian([[2.0, 0.0]], rows=['k'], cols=['a', 'b'])
        >>> J['k', 'a']
        2.0
        >>> J.submatrix(cols=['b']).values
        array([[0.]])
    """

    def __init__(self, values, rows: Sequence[str], cols: Sequence[str]):
        self.rows = _unique(rows, "row")
        self.cols = _unique(cols, "column")

        values = np.asarray(values, dtype=float)
        if values.size == 0:
            values = values.reshape(len(self.rows), len(self.cols))
        if values.shape != (len(self.rows), len(self.cols)):
            raise ValueError(
                f"Jacobian values have shape {values.shape}, expected "
                f"({len(self.rows)}, {len(self.cols)})",
            )
        self.values = values
        self._row_index = {n: i for i, n in enumerate(self.rows)}
        self._col_index = {n: j for j, n in enumerate(self.cols)}

    # ========================================================================
    # Constructors
    # ========================================================================

    @classmethod
    def identity(cls, names: Sequence[str]) -> "Jacobian":
        """d p / d p for the given names"""
        return cls(np.eye(len(names)), names, names)

    @classmethod
    def zeros(cls, rows: Sequence[str], cols: Sequence[str]) -> "Jacobian":
        return cls(np.zeros((len(rows), len(cols))), rows, cols)

    # ========================================================================
    # Access
    # ========================================================================

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    def __getitem__(self, key: Tuple[str, str]) -> float:
        row, col = key
        return float(self.values[self._row_index[row], self._col_index[col]])

    def submatrix(
        self,
        rows: Optional[Sequence[str]] = None,
        cols: Optional[Sequence[str]] = None,
    ) -> "Jacobian":
        """
        Select rows and/or columns by label, in the order given.

        Raises:
            KeyError: If a requested label does not exist
        """
        rows = self.rows if rows is None else tuple(rows)
        cols = self.cols if cols is None else tuple(cols)

        missing_rows = [r for r in rows if r not in self._row_index]
        missing_cols = [c for c in cols if c not in self._col_index]
        if missing_rows or missing_cols:
            raise KeyError(
                f"Jacobian has no rows {missing_rows} / columns {missing_cols} "
                f"(rows={list(self.rows)}, cols={list(self.cols)})",
            )

        i = [self._row_index[r] for r in rows]
        j = [self._col_index[c] for c in cols]
        return Jacobian(self.values[np.ix_(i, j)], rows, cols)

    def drop_cols(self, names: Iterable[str]) -> "Jacobian":
        """Remove the named columns; unknown names are ignored"""
        names = set(names)
        return self.submatrix(cols=[c for c in self.cols if c not in names])

    # ========================================================================
    # Algebra
    # ========================================================================

    def __matmul__(self, other: "Jacobian") -> "Jacobian":
        if not isinstance(other, Jacobian):
            return NotImplemented
        if self.cols != other.rows:
            raise ValueError(
                f"Cannot chain Jacobians: columns {list(self.cols)} do not match "
                f"rows {list(other.rows)}",
            )
        return Jacobian(self.values @ other.values, self.rows, other.cols)

    def chain(self, upstream: "Jacobian") -> "Jacobian":
        """
        Right-multiply by the upstream Jacobian restricted to this one's columns.

        Args:
            upstream: Sensitivity of this Jacobian's column parameters with
                respect to some reference parameterisation

        Returns:
            Sensitivity of this Jacobian's rows w.r.t. the reference
        """
        return self @ upstream.submatrix(rows=self.cols)

    def stack(self, other: "Jacobian") -> "Jacobian":
        """
        Append the rows of another Jacobian.

        Columns are the union of both column sets (this one's first);
        entries absent from either block are zero.
        """
        clash = [r for r in other.rows if r in self._row_index]
        if clash:
            raise ValueError(f"Cannot stack Jacobians with common rows {clash}")

        cols = self.cols + tuple(c for c in other.cols if c not in self._col_index)
        values = np.zeros((len(self.rows) + len(other.rows), len(cols)))
        col_index = {c: j for j, c in enumerate(cols)}

        values[: len(self.rows), [col_index[c] for c in self.cols]] = self.values
        values[len(self.rows) :, [col_index[c] for c in other.cols]] = other.values
        return Jacobian(values, self.rows + other.rows, cols)

    # ========================================================================
    # Conversion
    # ========================================================================

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        """Nested {row: {col: value}} representation"""
        return {
            r: {c: float(self.values[i, j]) for j, c in enumerate(self.cols)}
            for i, r in enumerate(self.rows)
        }

    def __array__(self, dtype=None, copy=None):
        return self.values if dtype is None else self.values.astype(dtype)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Jacobian):
            return NotImplemented
        return (
            self.rows == other.rows
            and self.cols == other.cols
            and np.array_equal(self.values, other.values)
        )

    __hash__ = None

    def __repr__(self) -> str:
        if not self.rows or not self.cols:
            return f"Jacobian(rows={list(self.rows)}, cols={list(self.cols)})"
        width = max(len(r) for r in self.rows)
        colw = max(10, max(len(c) for c in self.cols))
        header = " " * width + " " + " ".join(f"{c:>{colw}}" for c in self.cols)
        lines = [header]
        for r, row in zip(self.rows, self.values):
            lines.append(f"{r:<{width}} " + " ".join(f"{v:>{colw}.4g}" for v in row))
        return "\n".join(lines)
