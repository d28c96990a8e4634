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
Unit Tests for ExplicitTransformation

Tests direct substitution transformations: values, local Jacobians,
chaining with upstream Jacobians, fixed parameters, identity fallbacks
and attached inputs.
"""

import numpy as np
import pytest

from partrafo.core.jacobian import Jacobian
from partrafo.core.parameter_vector import ParameterVector
from partrafo.exceptions import (
    DuplicateOutputError,
    MissingParameterError,
    UnresolvedSymbolError,
    ValidationError,
)
from partrafo.transforms.explicit import ExplicitTransformation, build_explicit

# Conditional imports
jax_available = False

try:
    import jax

    jax_available = True
except ImportError:
    pass


def finite_difference(func, point, outputs, inputs, h=1e-6):
    """Central differences d outputs / d inputs of a dict -> mapping function"""
    J = np.zeros((len(outputs), len(inputs)))
    for j, name in enumerate(inputs):
        up, down = dict(point), dict(point)
        up[name] += h
        down[name] -= h
        f_up, f_down = func(up), func(down)
        for i, out in enumerate(outputs):
            J[i, j] = (f_up[out] - f_down[out]) / (2 * h)
    return J


# ============================================================================
# Test: Values and Local Jacobian
# ============================================================================


class TestEvaluation:
    """Test values and local Jacobians"""

    def test_identity(self):
        """Identity equations give the input and an identity Jacobian"""
        trafo = build_explicit({"a": "a", "b": "b"})

        out = trafo({"a": 1.0, "b": 2.0})

        assert out.to_dict() == {"a": 1.0, "b": 2.0}
        assert out.jacobian == Jacobian.identity(["a", "b"])

    def test_log_transformation(self):
        trafo = build_explicit({"k1": "exp(logk1)", "k2": "exp(logk2)"})

        out = trafo({"logk1": 1.0, "logk2": -1.0})

        assert out.names == ("k1", "k2")
        np.testing.assert_allclose(out.to_array(), [np.e, np.exp(-1)])
        assert out.jacobian.rows == ("k1", "k2")
        assert out.jacobian.cols == ("logk1", "logk2")
        np.testing.assert_allclose(out.jacobian.values, np.diag([np.e, np.exp(-1)]))

    def test_mixed_terms(self):
        trafo = build_explicit({"x": "a*b", "y": "a^2"})

        out = trafo({"a": 2.0, "b": 3.0})

        assert out["x"] == pytest.approx(6.0)
        np.testing.assert_allclose(out.jacobian.values, [[3.0, 2.0], [4.0, 0.0]])

    def test_local_jacobian_matches_finite_difference(self):
        trafo = build_explicit({"x": "exp(u)*v", "y": "u^2 + sin(v)"})
        point = {"u": 0.3, "v": 0.7}

        out = trafo(point)
        expected = finite_difference(trafo, point, ["x", "y"], ["u", "v"])

        np.testing.assert_allclose(out.jacobian.values, expected, rtol=1e-6)

    def test_want_deriv_false(self):
        trafo = build_explicit({"k": "exp(logk)"})
        out = trafo({"logk": 0.0}, want_deriv=False)

        assert out["k"] == 1.0
        assert out.jacobian is None

    def test_extra_inputs_are_zero_columns(self):
        """Inputs the equations do not use get zero derivative columns"""
        trafo = build_explicit({"k": "exp(logk)"})
        out = trafo({"logk": 0.0, "other": 5.0})

        assert out.names == ("k",)
        assert out.jacobian.cols == ("logk", "other")
        assert out.jacobian["k", "other"] == 0.0

    def test_missing_value(self):
        trafo = build_explicit({"k": "exp(logk)"})
        with pytest.raises(MissingParameterError):
            trafo({"other": 1.0})

    def test_constant_equation(self):
        trafo = build_explicit({"k": "2"})
        out = trafo({})

        assert out["k"] == 2.0
        assert out.jacobian.shape == (1, 0)


# ============================================================================
# Test: Fixed Parameters
# ============================================================================


class TestFixed:
    """Test values that receive no derivative column"""

    def test_fixed_column_excluded(self):
        trafo = build_explicit({"k": "a*b"})

        out = trafo({"a": 2.0}, fixed={"b": 3.0})

        assert out["k"] == pytest.approx(6.0)
        assert out.jacobian.cols == ("a",)
        assert out.jacobian["k", "a"] == pytest.approx(3.0)

    def test_fixed_overrides_outer(self):
        trafo = build_explicit({"k": "a*b"})

        out = trafo({"a": 2.0, "b": 100.0}, fixed={"b": 3.0})

        assert out["k"] == pytest.approx(6.0)
        assert out.jacobian.cols == ("a",)


# ============================================================================
# Test: Chaining
# ============================================================================


class TestChaining:
    """Test chain rule with Jacobians carried by the input"""

    def test_chain_rule(self):
        """d inner / d a equals the finite difference through both stages"""
        first = build_explicit({"u": "a + b", "v": "a*b"})
        second = build_explicit({"x": "exp(u)*v", "y": "u^2 + v"})
        point = {"a": 0.3, "b": 0.7}

        out = second(first(point))
        expected = finite_difference(lambda p: second(first(p)), point, ["x", "y"], ["a", "b"])

        assert out.jacobian.cols == ("a", "b")
        np.testing.assert_allclose(out.jacobian.values, expected, rtol=1e-6)

    def test_upstream_jacobian_used(self):
        upstream = Jacobian([[2.0]], rows=["u"], cols=["ref"])
        outer = ParameterVector({"u": 1.5}, jacobian=upstream)

        out = build_explicit({"x": "3*u"})(outer)

        assert out.jacobian.cols == ("ref",)
        assert out.jacobian["x", "ref"] == pytest.approx(6.0)

    def test_identity_upstream_is_neutral(self):
        trafo = build_explicit({"x": "u^2"})
        plain = trafo({"u": 2.0})
        chained = trafo(ParameterVector({"u": 2.0}).with_identity())

        assert chained.jacobian == plain.jacobian

    def test_upstream_missing_rows(self):
        """Every input column needs an upstream sensitivity"""
        outer = ParameterVector({"u": 1.0, "v": 2.0}, jacobian=Jacobian.identity(["u"]))
        with pytest.raises(KeyError):
            build_explicit({"x": "u*v"})(outer)


# ============================================================================
# Test: Declared Parameters
# ============================================================================


class TestDeclaredParameters:
    """Test explicit parameter lists and identity fallbacks"""

    def test_default_parameters_are_symbols(self):
        trafo = build_explicit({"k1": "exp(logk1)", "A": "exp(logA)"})
        assert trafo.parameters == ("logk1", "logA")

    def test_identity_fallback(self):
        """Declared parameters not used by any equation pass through"""
        trafo = build_explicit({"k1": "exp(logk1)"}, parameters=["logk1", "A"])

        out = trafo({"logk1": 0.0, "A": 3.0})

        assert list(out.items()) == [("k1", 1.0), ("A", 3.0)]
        assert out.jacobian["A", "A"] == 1.0
        assert out.jacobian["A", "logk1"] == 0.0
        assert trafo.equations.names == ("k1", "A")

    def test_cancelled_parameter_has_no_fallback(self):
        """A parameter written in an equation is used even if it cancels"""
        trafo = build_explicit({"y": "x - x + z"}, parameters=["x", "z"])

        out = trafo({"x": 5.0, "z": 2.0})

        assert trafo.equations.names == ("y",)
        assert list(out.items()) == [("y", 2.0)]
        assert out.jacobian["y", "x"] == 0.0
        assert out.jacobian["y", "z"] == 1.0

    def test_keyword_parameter(self):
        """Parameters may be named after Python keywords"""
        trafo = build_explicit({"k": "exp(lambda)"})

        out = trafo({"lambda": 0.0})

        assert trafo.parameters == ("lambda",)
        assert out["k"] == pytest.approx(1.0)
        assert out.jacobian.cols == ("lambda",)
        assert out.jacobian["k", "lambda"] == pytest.approx(1.0)

    def test_identity_fallback_collision(self):
        with pytest.raises(DuplicateOutputError, match="identity fallback"):
            build_explicit({"A": "exp(x)"}, parameters=["x", "A"])

    def test_unresolved_symbol(self):
        with pytest.raises(UnresolvedSymbolError):
            build_explicit({"k": "exp(logk)"}, parameters=["other"])

    def test_empty_equations(self):
        with pytest.raises(ValidationError):
            build_explicit({})


# ============================================================================
# Test: Attached Inputs
# ============================================================================


class TestAttachInput:
    """Test passing unmapped outer parameters through"""

    def test_attach_without_upstream(self):
        trafo = build_explicit({"k": "exp(logk)"}, attach_input=True)

        out = trafo({"logk": 0.0, "A": 2.0})

        assert out.names == ("k", "logk", "A")
        assert out["A"] == 2.0
        assert out.jacobian.cols == ("logk", "A")
        np.testing.assert_allclose(out.jacobian.values, [[1.0, 0.0], [1.0, 0.0], [0.0, 1.0]])

    def test_attach_with_upstream(self):
        """Attached rows carry their upstream sensitivities"""
        upstream = Jacobian([[1.0, 0.0], [0.0, 4.0]], rows=["logk", "A"], cols=["r1", "r2"])
        outer = ParameterVector({"logk": 0.0, "A": 2.0}, jacobian=upstream)

        out = build_explicit({"k": "exp(logk)"}, attach_input=True)(outer)

        assert out.jacobian.cols == ("r1", "r2")
        assert out.jacobian["A", "r2"] == pytest.approx(4.0)
        assert out.jacobian["k", "r1"] == pytest.approx(1.0)

    def test_attach_skips_fixed_columns(self):
        trafo = build_explicit({"k": "exp(logk)"}, attach_input=True)

        out = trafo({"logk": 0.0, "A": 2.0}, fixed={"logk": 0.0})

        assert "logk" not in out.jacobian.cols
        assert out.jacobian["A", "A"] == 1.0

    def test_attach_flag_mutable(self):
        trafo = build_explicit({"k": "exp(logk)"})
        trafo.attach_input = True
        assert trafo({"logk": 0.0, "A": 2.0}).names == ("k", "logk", "A")

    def test_no_attach_by_default(self):
        trafo = build_explicit({"k": "exp(logk)"})
        assert trafo({"logk": 0.0, "A": 2.0}).names == ("k",)


# ============================================================================
# Test: Metadata
# ============================================================================


class TestMetadata:
    def test_condition_qualifies_model_name(self):
        trafo = build_explicit({"k": "exp(logk)"}, condition="cond 1", model_name="p_log")

        assert trafo.condition == "cond 1"
        assert trafo.model_name == "p_log_cond_1"

    def test_class_and_builder_agree(self):
        trafo = build_explicit({"k": "exp(logk)"})
        assert isinstance(trafo, ExplicitTransformation)

    def test_repr(self):
        text = repr(build_explicit({"k": "exp(logk)"}, condition="c1"))
        assert "ExplicitTransformation" in text
        assert "c1" in text

    @pytest.mark.skipif(not jax_available, reason="JAX not available")
    def test_compiled_matches_interpreted(self):
        eqns = {"x": "exp(u)*v", "y": "u^2 + v"}
        point = {"u": 0.3, "v": 0.7}

        plain = build_explicit(eqns)(point)
        compiled = build_explicit(eqns, compile=True)(point)

        np.testing.assert_allclose(compiled.to_array(), plain.to_array(), rtol=1e-12)
        np.testing.assert_allclose(compiled.jacobian.values, plain.jacobian.values, rtol=1e-12)
