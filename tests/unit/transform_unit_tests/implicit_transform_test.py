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
Unit Tests for ImplicitTransformation

Tests steady-state transformations: root values, sensitivities by the
implicit function theorem, warm starts from the guess cache, negative
root repair and failure propagation.
"""

import numpy as np
import pytest

from partrafo.core.jacobian import Jacobian
from partrafo.exceptions import (
    MissingParameterError,
    NegativeRootWarning,
    RootFindingError,
    SingularJacobianError,
    ValidationError,
)
from partrafo.symbolic.equations import EquationSet
from partrafo.transforms.implicit import ImplicitTransformation, build_implicit
from partrafo.types.core import RootResult
from partrafo.utils.root_finding import multiroot

# Conditional imports
jax_available = False

try:
    import jax

    jax_available = True
except ImportError:
    pass


# A <-> B with the second steady-state equation replaced by A + B = total
CONSERVATION = EquationSet({"A": "-k1*A + k2*B", "B": "k1*A - k2*B"}).replace({"B": "A + B - total"})

PARS = {"k1": 1.0, "k2": 2.0, "A": 5.0, "B": 5.0, "total": 3.0}


def direct_solution(k1, k2, total):
    """Solve the linear conservation system directly"""
    return np.linalg.solve([[-k1, k2], [1.0, 1.0]], [0.0, total])


class RecordingRootFinder:
    """multiroot wrapper that records every initial guess"""

    def __init__(self):
        self.starts = []

    def __call__(self, f, start, parms, **kwargs):
        self.starts.append(np.array(start, dtype=float))
        return multiroot(f, start, parms, **kwargs)


# ============================================================================
# Test: Construction
# ============================================================================


class TestConstruction:
    """Test derived attributes"""

    def test_attributes(self):
        steady = build_implicit(CONSERVATION, ["total"])

        assert isinstance(steady, ImplicitTransformation)
        assert steady.states == ["A", "B"]
        assert steady.dependent == ["A", "B"]
        assert steady.nonstates == ["k1", "k2", "total"]
        assert steady.sensitivity_parameters == ["k1", "k2", "total"]
        assert steady.parameters == ("total",)
        assert steady.guess_cache.is_empty
        assert steady.last_solve is None

    def test_free_state_is_not_dependent(self):
        steady = build_implicit({"A": "-k1*A + k2*B", "B": "k1*A - k2*B"}, ["A"])

        assert steady.dependent == ["B"]
        assert steady.sensitivity_parameters == ["k1", "k2", "A"]

    def test_unreferenced_dependent(self):
        with pytest.raises(ValidationError, match="Dependent variable 'A'"):
            build_implicit({"A": "k1 - k2"})

    def test_residual_helpers(self):
        steady = build_implicit(CONSERVATION, ["total"])
        parms = {"k1": 1.0, "k2": 2.0, "total": 3.0}

        np.testing.assert_allclose(steady.residuals(np.array([2.0, 1.0]), parms), [0.0, 0.0])
        np.testing.assert_allclose(
            steady.residual_jacobian(np.array([2.0, 1.0]), parms),
            [[-1.0, 2.0], [1.0, 1.0]],
        )


# ============================================================================
# Test: Root and Sensitivities
# ============================================================================


class TestSteadyState:
    """Test roots and implicit function theorem sensitivities"""

    def test_conservation_root(self):
        steady = build_implicit(CONSERVATION, ["total"])

        out = steady(PARS)

        np.testing.assert_allclose([out["A"], out["B"]], direct_solution(1.0, 2.0, 3.0), rtol=1e-8)
        assert out.names == ("A", "B", "k1", "k2", "total")
        assert out["k1"] == 1.0
        assert out["total"] == 3.0

    def test_conservation_sensitivities(self):
        """dx/dp = -(df/dx)^-1 df/dp matches the analytic solution"""
        steady = build_implicit(CONSERVATION, ["total"])

        J = steady(PARS).jacobian

        assert J.rows == ("A", "B", "k1", "k2", "total")
        assert J.cols == ("k1", "k2", "A", "B", "total")
        np.testing.assert_allclose(
            J.submatrix(rows=["A", "B"], cols=["k1", "k2", "total"]).values,
            [[-2 / 3, 1 / 3, 2 / 3], [2 / 3, -1 / 3, 1 / 3]],
            rtol=1e-8,
        )

    def test_rounded_parameters(self):
        """Roots found to machine precision are accepted"""
        steady = build_implicit(CONSERVATION, ["total"])
        pars = dict(PARS, k2=np.exp(np.log(2.0)), total=np.exp(np.log(3.0)))

        out = steady(pars)

        assert out["A"] == pytest.approx(2.0)
        assert out["B"] == pytest.approx(1.0)
        assert out.jacobian["A", "total"] == pytest.approx(2 / 3)

    def test_initial_guess_has_no_influence(self):
        steady = build_implicit(CONSERVATION, ["total"])
        J = steady(PARS).jacobian

        assert J["A", "A"] == 0.0
        assert J["B", "A"] == 0.0
        assert J["A", "B"] == 0.0

    def test_passthrough_rows_are_identity(self):
        steady = build_implicit(CONSERVATION, ["total"])
        J = steady(PARS).jacobian

        np.testing.assert_array_equal(
            J.submatrix(rows=["k1", "k2", "total"], cols=["k1", "k2", "total"]).values,
            np.eye(3),
        )

    def test_sensitivities_match_finite_difference(self):
        steady = build_implicit(CONSERVATION, ["total"], keep_root=False)
        J = steady(PARS).jacobian
        h = 1e-4

        for name in ["k1", "k2", "total"]:
            up, down = dict(PARS), dict(PARS)
            up[name] += h
            down[name] -= h
            dA = (steady(up)["A"] - steady(down)["A"]) / (2 * h)
            assert J["A", name] == pytest.approx(dA, rel=1e-5)

    def test_free_state(self):
        """B = k1/k2 * A when A is a free parameter"""
        steady = build_implicit({"A": "-k1*A + k2*B", "B": "k1*A - k2*B"}, ["A"])

        out = steady({"k1": 1.0, "k2": 0.1, "A": 10.0, "B": 1.0})

        assert out.names == ("B", "k1", "k2", "A")
        assert out["B"] == pytest.approx(100.0)
        assert out.jacobian["B", "A"] == pytest.approx(10.0)
        assert out.jacobian["B", "k1"] == pytest.approx(100.0)
        assert out.jacobian["B", "k2"] == pytest.approx(-1000.0)
        assert out.jacobian["A", "A"] == 1.0

    def test_want_deriv_false(self):
        steady = build_implicit(CONSERVATION, ["total"])
        out = steady(PARS, want_deriv=False)

        assert out.jacobian is None
        assert out["A"] == pytest.approx(2.0)

    def test_nothing_to_solve(self):
        """Without dependent variables the transformation is the identity"""
        with pytest.warns(UserWarning, match="nothing will be solved"):
            trafo = build_implicit({"A": "A - k"}, ["A"])

        out = trafo({"A": 1.0, "k": 2.0})

        assert out.to_dict() == {"A": 1.0, "k": 2.0}
        assert out.jacobian == Jacobian.identity(["A", "k"])

    def test_solver_options(self):
        steady = build_implicit(CONSERVATION, ["total"], method="lm", maxiter=200)
        out = steady(PARS)
        assert out["A"] == pytest.approx(2.0)


# ============================================================================
# Test: Fixed Parameters
# ============================================================================


class TestFixed:
    def test_fixed_column_dropped(self):
        steady = build_implicit(CONSERVATION, ["total"])
        outer = {n: v for n, v in PARS.items() if n != "total"}

        out = steady(outer, fixed={"total": 3.0})

        assert out["total"] == 3.0
        assert out.jacobian.cols == ("k1", "k2", "A", "B")
        assert out.jacobian["A", "k1"] == pytest.approx(-2 / 3)
        assert not out.jacobian.submatrix(rows=["total"]).values.any()

    def test_fixed_overrides_outer(self):
        steady = build_implicit(CONSERVATION, ["total"])

        out = steady(PARS, fixed={"total": 6.0})

        assert out["A"] + out["B"] == pytest.approx(6.0)
        assert "total" not in out.jacobian.cols


# ============================================================================
# Test: Warm Start
# ============================================================================


class TestWarmStart:
    """Test reuse of the last root as initial guess"""

    def test_second_call_starts_from_last_root(self):
        finder = RecordingRootFinder()
        steady = build_implicit(CONSERVATION, ["total"], root_finder=finder)

        steady(PARS)
        steady(PARS)

        np.testing.assert_array_equal(finder.starts[0], [5.0, 5.0])
        np.testing.assert_allclose(finder.starts[1], [2.0, 1.0], rtol=1e-8)

    def test_last_solve_reports_start(self):
        steady = build_implicit(CONSERVATION, ["total"])

        steady(PARS)
        np.testing.assert_array_equal(steady.last_solve["start"], [5.0, 5.0])

        steady(PARS)
        np.testing.assert_allclose(steady.last_solve["start"], [2.0, 1.0], rtol=1e-8)

    def test_perturbed_call_matches_cold_start(self):
        """A warm-started solve after a small change in k1 gives the cold-start root"""
        finder = RecordingRootFinder()
        warm = build_implicit(CONSERVATION, ["total"], root_finder=finder)
        cold = build_implicit(CONSERVATION, ["total"], keep_root=False)
        perturbed = dict(PARS, k1=1.01)

        first = warm(PARS)
        warm_out = warm(perturbed)
        cold(PARS)
        cold_out = cold(perturbed)

        np.testing.assert_allclose(finder.starts[1], [first["A"], first["B"]], rtol=1e-12)
        np.testing.assert_allclose(warm_out.to_array(), cold_out.to_array(), rtol=1e-8)
        np.testing.assert_allclose(warm_out.jacobian.values, cold_out.jacobian.values, rtol=1e-8)
        assert warm_out["A"] == pytest.approx(6.0 / 3.01)

    def test_keep_root_false(self):
        finder = RecordingRootFinder()
        steady = build_implicit(CONSERVATION, ["total"], keep_root=False, root_finder=finder)

        steady(PARS)
        steady(PARS)

        np.testing.assert_array_equal(finder.starts[1], [5.0, 5.0])
        assert steady.guess_cache.is_empty

    def test_cache_holds_root(self):
        steady = build_implicit(CONSERVATION, ["total"])
        steady(PARS)

        guess = steady.guess_cache.get()
        assert guess["A"] == pytest.approx(2.0)
        assert guess["B"] == pytest.approx(1.0)


# ============================================================================
# Test: Negative Roots
# ============================================================================


class TestNegativeRoots:
    """x + a = 0 has the root x = -a"""

    def test_negative_root_kept_without_positive(self):
        trafo = build_implicit({"x": "x + a"}, positive=False)

        out = trafo({"x": 1.0, "a": 2.0})

        assert out["x"] == pytest.approx(-2.0)
        assert not trafo.guess_cache.is_empty

    def test_negative_root_repaired(self):
        trafo = build_implicit({"x": "x + a"}, positive=True)

        with pytest.warns(NegativeRootWarning, match="set to 0"):
            out = trafo({"x": 1.0, "a": 2.0})

        assert out["x"] == 0.0
        assert trafo.guess_cache.is_empty

    def test_repair_resets_cache(self):
        trafo = build_implicit({"x": "x + a"}, positive=False)
        trafo({"x": 1.0, "a": 2.0})
        assert not trafo.guess_cache.is_empty

        trafo.positive = True
        with pytest.warns(NegativeRootWarning):
            trafo({"x": 1.0, "a": 2.0})

        assert trafo.guess_cache.is_empty

    def test_repair_restarts_from_caller_guess(self):
        finder = RecordingRootFinder()
        trafo = build_implicit({"x": "x + a"}, positive=False, root_finder=finder)
        trafo({"x": 1.0, "a": 2.0})

        trafo.positive = True
        with pytest.warns(NegativeRootWarning):
            trafo({"x": 1.0, "a": 2.0})

        # warm start from the cached -2, then the cold restart from 1
        np.testing.assert_allclose(finder.starts[1], [-2.0])
        np.testing.assert_array_equal(finder.starts[2], [1.0])

    def test_negative_root_warning_is_user_warning(self):
        assert issubclass(NegativeRootWarning, UserWarning)


# ============================================================================
# Test: Failures
# ============================================================================


class TestFailures:
    """Numerical failures propagate and leave no state behind"""

    def test_root_finding_failure(self):
        trafo = build_implicit({"x": "x^2 + a"})

        with pytest.raises(RootFindingError):
            trafo({"x": 1.0, "a": 1.0})

        assert trafo.guess_cache.is_empty
        assert trafo.last_solve is None

    def test_singular_residual_jacobian(self):
        """d(x^2 - a)/dx vanishes at x = 0"""

        def fake_root_finder(f, start, parms, jacobian=None, positive=False, **kwargs):
            return RootResult(
                root=np.array([0.0]),
                f_root=np.array([0.0]),
                converged=True,
                nfev=0,
                start=np.asarray(start),
                message="fake",
            )

        trafo = build_implicit({"x": "x^2 - a"}, root_finder=fake_root_finder)

        with pytest.raises(SingularJacobianError, match="singular"):
            trafo({"x": 1.0, "a": 0.0})

        assert trafo.guess_cache.is_empty
        assert trafo.last_solve is None

    def test_singular_without_deriv_succeeds(self):
        def fake_root_finder(f, start, parms, **kwargs):
            return RootResult(
                root=np.array([0.0]),
                f_root=np.array([0.0]),
                converged=True,
                nfev=0,
                start=np.asarray(start),
                message="fake",
            )

        trafo = build_implicit({"x": "x^2 - a"}, root_finder=fake_root_finder)
        out = trafo({"x": 1.0, "a": 0.0}, want_deriv=False)

        assert out["x"] == 0.0

    def test_missing_initial_guess(self):
        steady = build_implicit(CONSERVATION, ["total"])
        with pytest.raises(MissingParameterError, match="initial guess"):
            steady({"k1": 1.0, "k2": 2.0, "total": 3.0})

    def test_missing_rate(self):
        steady = build_implicit(CONSERVATION, ["total"])
        with pytest.raises(MissingParameterError):
            steady({"k2": 2.0, "A": 5.0, "B": 5.0, "total": 3.0})


# ============================================================================
# Test: Metadata
# ============================================================================


class TestMetadata:
    def test_model_name_suffixes(self):
        steady = build_implicit(CONSERVATION, ["total"], model_name="steady", condition="c1")

        assert steady.model_name == "steady_c1"
        assert steady._dfdx.name == "steady_c1_dfdx"
        assert steady._dfdp.name == "steady_c1_dfdp"

    @pytest.mark.skipif(not jax_available, reason="JAX not available")
    def test_compiled_matches_interpreted(self):
        plain = build_implicit(CONSERVATION, ["total"])(PARS)
        compiled = build_implicit(CONSERVATION, ["total"], compile=True)(PARS)

        np.testing.assert_allclose(compiled.to_array(), plain.to_array(), rtol=1e-8)
        np.testing.assert_allclose(compiled.jacobian.values, plain.jacobian.values, rtol=1e-8)
