"""Tests for the pooled_lrt() front end."""

import os

import numpy as np
import pytest
from scipy import stats

import pooled_lrt._config as _cfg
from pooled_lrt import PooledResult, pooled_lrt, set_default_method
from pooled_lrt.fits import TestRecord

from synthetic import SyntheticEngine, make_collection

LL0 = [-100.0, -102.0, -98.0]
LL1 = [-90.0, -91.0, -89.0]


@pytest.fixture(autouse=True)
def _reset_config():
    _cfg._method_override = None
    _cfg._n_jobs_override = None
    os.environ.pop("POOLED_LRT_METHOD", None)
    yield
    _cfg._method_override = None
    _cfg._n_jobs_override = None


def _robust(c, d, m=3):
    return [TestRecord(stat=1.0, df=d, scaling_factor=c)] * m


class TestInputValidation:
    def test_rejects_non_collection_model(self):
        with pytest.raises(TypeError, match="model must be a FitCollection"):
            pooled_lrt({"chisq": 1.0})

    def test_rejects_non_collection_h1(self):
        model = make_collection([1.0, 2.0], 3)
        with pytest.raises(TypeError, match="h1 must be a FitCollection"):
            pooled_lrt(model, [1.0, 2.0])

    def test_unknown_method(self):
        model = make_collection([1.0, 2.0], 3)
        with pytest.raises(ValueError, match="Invalid test"):
            pooled_lrt(model, test="D4")

    def test_equal_df(self):
        m0 = make_collection([10.0, 10.0], 4)
        m1 = make_collection([4.0, 4.0], 4, lhs="m1")
        with pytest.raises(ValueError, match="equal degrees of freedom"):
            pooled_lrt(m0, m1, test="D2")

    def test_unknown_engine_name(self):
        model = make_collection([1.0, 2.0], 3)
        with pytest.raises(ValueError, match="Unknown engine"):
            pooled_lrt(model, test="D2", engine="lavaan")


class TestStatisticPoolingEndToEnd:
    """Properties of the D2 path through the front end."""

    def test_nested_comparison(self):
        m0 = make_collection([15, 14, 16, 13, 17], 10)
        m1 = make_collection([8, 7, 9, 6, 10], 6, lhs="m1")
        result = pooled_lrt(m0, m1, test="D2", asymptotic=True)
        assert isinstance(result, PooledResult)
        assert result.chisq == pytest.approx(7.0)
        assert result.df == pytest.approx(4.0)
        assert result.ariv == 0.0
        assert result.method == "D2"
        assert result.n_imputations == 5
        assert result.notices == ()

    def test_nested_comparison_f_form(self):
        m0 = make_collection([15, 14, 16, 13, 17], 10)
        m1 = make_collection([8, 7, 9, 6, 10], 6, lhs="m1")
        result = pooled_lrt(m0, m1, test="D2")
        assert result.F == pytest.approx(1.75)
        assert result.df1 == pytest.approx(4.0)
        assert np.isposinf(result.df2)
        assert "chisq" not in result

    def test_argument_order_irrelevant(self):
        m0 = make_collection([12.0, 9.0, 14.0], 5)
        m1 = make_collection([4.0, 3.0, 5.0], 3, lhs="m1")
        forward = pooled_lrt(m0, m1, test="D2", asymptotic=True)
        backward = pooled_lrt(m1, m0, test="D2", asymptotic=True)
        assert forward.df == pytest.approx(2.0)
        assert backward.df == pytest.approx(2.0)
        assert forward.to_dict() == backward.to_dict()
        assert backward.context.swapped

    def test_single_imputation_is_plain_test(self):
        model = make_collection([6.0], 3)
        result = pooled_lrt(model, test="D2", asymptotic=True)
        assert result.chisq == pytest.approx(6.0)
        assert result.pvalue == pytest.approx(stats.chi2.sf(6.0, 3))
        assert result.npar == 2

    def test_convergence_mismatch_noted(self):
        m0 = make_collection([15, 14, 16], 10, converged=[True, False, True])
        m1 = make_collection([8, 7, 9], 6, lhs="m1", converged=[True, True, False])
        with pytest.warns(UserWarning, match="same set of imputations"):
            result = pooled_lrt(m0, m1, test="D2", asymptotic=True)
        assert result.n_imputations == 1
        assert result.chisq == pytest.approx(7.0)
        assert len(result.notices) == 1

    def test_default_method_from_config(self):
        set_default_method("D2")
        model = make_collection([6.0, 6.0], 3)
        assert pooled_lrt(model).method == "D2"

    def test_zero_statistic_early_return(self):
        model = make_collection([0.0, 0.0], 3)
        with pytest.warns(UserWarning, match="arbitrarily perfect"):
            result = pooled_lrt(model, test="D2", asymptotic=True)
        assert result.chisq == 0.0
        assert result.context.clamped
        assert not result.notices[-1].endswith("not returned.")


class TestLikelihoodPoolingEndToEnd:
    def test_single_model(self):
        engine = SyntheticEngine(logliks={"m0": LL0, "sat": LL1})
        model = make_collection([22.0, 24.0, 20.0], 3, engine=engine)
        result = pooled_lrt(model)
        assert result.method == "D3"
        assert result.F == pytest.approx(20.0 / 7.0)
        assert result.df2 == pytest.approx(8.5)
        assert result.aic == pytest.approx(204.0)
        assert result.context.lrt_pooled == pytest.approx(20.0)

    def test_engine_argument_overrides_stored_engine(self):
        engine = SyntheticEngine(logliks={"m0": LL0, "sat": LL1})
        model = make_collection([22.0, 24.0, 20.0], 3)
        result = pooled_lrt(model, test="D3", engine=engine)
        assert result.F == pytest.approx(20.0 / 7.0)

    def test_pair_in_either_order(self):
        engine = SyntheticEngine(logliks={"m0": LL0, "m1": LL1})
        m0 = make_collection([30.0, 33.0, 27.0], 5, engine=engine)
        m1 = make_collection([8.0, 9.0, 7.0], 2, lhs="m1", engine=engine)
        forward = pooled_lrt(m0, m1, test="mr")
        backward = pooled_lrt(m1, m0, test="mr")
        assert forward.F == pytest.approx(backward.F)
        assert forward.df1 == backward.df1 == 3

    def test_mplus_alias_is_asymptotic(self):
        engine = SyntheticEngine(logliks={"m0": LL0, "sat": LL1})
        model = make_collection([22.0, 24.0, 20.0], 3, engine=engine)
        result = pooled_lrt(model, test="Mplus")
        assert result.asymptotic
        assert result.chisq == pytest.approx(60.0 / 7.0)

    def test_undefined_statistic_recommends_d2(self):
        engine = SyntheticEngine(logliks={"m0": LL0, "sat": LL1})
        # m = 3, df = 2: ariv = LRT_bar - LRT_pooled = -1 zeroes the denominator.
        model = make_collection([19.0, 19.0, 19.0], 2, engine=engine)
        with pytest.raises(RuntimeError, match="Try the D2"):
            pooled_lrt(model, test="D3")

    def test_evaluation_failure_counted(self):
        engine = SyntheticEngine(
            logliks={"m0": [-100.0, -50.0, -102.0, -98.0], "m1": [-90.0, None, -91.0, -89.0]}
        )
        m0 = make_collection([30.0, 99.0, 33.0, 27.0], 5, engine=engine)
        m1 = make_collection([8.0, 1.0, 9.0, 7.0], 2, lhs="m1", engine=engine)
        result = pooled_lrt(m0, m1)
        assert result.n_excluded == 1
        assert result.n_imputations == 3
        assert result.F == pytest.approx(20.0 / 7.0)


class TestOptionPolicies:
    """Adjustments announced as notices."""

    def test_d3_needs_likelihood_estimator(self):
        model = make_collection([6.0, 6.0], 3, estimator="DWLS")
        with pytest.warns(UserWarning, match="maximum likelihood"):
            result = pooled_lrt(model, test="D3", asymptotic=True)
        assert result.method == "D2"
        assert result.chisq == pytest.approx(6.0)

    def test_pool_robust_ignored_for_standard_test(self):
        model = make_collection([6.0, 6.0], 3)
        with pytest.warns(UserWarning, match="pool_robust=True ignored"):
            result = pooled_lrt(model, test="D2", asymptotic=True, pool_robust=True)
        assert "chisq_scaled" not in result
        assert result.context.pool_robust is False

    def test_robust_forces_asymptotic_then_rescales(self):
        model = make_collection([10.0] * 3, 5, test="satorra.bentler", robust=_robust(2.0, 5.0))
        with pytest.warns(UserWarning) as record:
            result = pooled_lrt(model, test="D2")
        messages = [str(w.message) for w in record]
        assert any('"asymptotic" was switched' in msg for msg in messages)
        assert any("across 3 imputations" in msg for msg in messages)
        assert result.asymptotic
        assert result.chisq == pytest.approx(10.0)
        assert result.chisq_scaled == pytest.approx(5.0)
        assert result.chisq_scaling_factor == pytest.approx(2.0)
        assert result.pvalue_scaled == pytest.approx(stats.chi2.sf(5.0, 5.0))

    def test_zero_robust_statistic_suppresses_corrections(self):
        model = make_collection([0.0] * 3, 5, test="satorra.bentler", robust=_robust(2.0, 5.0))
        with pytest.warns(UserWarning, match="Robust corrections uninformative"):
            result = pooled_lrt(model, test="D2", asymptotic=True)
        assert result.chisq == 0.0
        assert "chisq_scaled" not in result

    def test_pool_robust_with_d3_switches_to_d2(self):
        robust = [TestRecord(stat=3.0, df=5.0, scaling_factor=2.0)] * 3
        model = make_collection([6.0] * 3, 5, test="satorra.bentler", robust=robust)
        with pytest.warns(UserWarning, match='Changed test to "D2"'):
            result = pooled_lrt(model, test="D3", pool_robust=True, asymptotic=True)
        assert result.method == "D2"
        assert result.chisq == pytest.approx(6.0)
        assert result.chisq_scaled == pytest.approx(3.0)

    def test_scaled_shifted_comparison_forces_robust_d2(self):
        engine = SyntheticEngine(differences=[(4.0, 3.0)] * 3)
        m0 = make_collection([12.0] * 3, 5, test="scaled.shifted", engine=engine)
        m1 = make_collection([4.0] * 3, 2, lhs="m1", test="scaled.shifted", engine=engine)
        with pytest.warns(UserWarning, match="scaled.shifted"):
            result = pooled_lrt(m0, m1, test="D3", asymptotic=True)
        assert result.method == "D2"
        assert result.context.pool_robust
        assert result.chisq == pytest.approx(8.0)
        assert result.chisq_scaled == pytest.approx(4.0)
        assert result.df_scaled == pytest.approx(3.0)

    def test_robust_difference_failures_reported(self, recwarn):
        engine = SyntheticEngine(differences=[(4.0, 3.0), None, (4.0, 3.0)])
        m0 = make_collection([12.0] * 3, 5, test="satorra.bentler", engine=engine)
        m1 = make_collection([4.0] * 3, 2, lhs="m1", test="satorra.bentler", engine=engine)
        result = pooled_lrt(m0, m1, test="D2", pool_robust=True)
        assert result.n_excluded == 1
        assert result.n_imputations == 3
        assert result.n_imputations_scaled == 2
        assert result.to_dict()["n_imputations_scaled"] == 2
        assert result.F_scaled == pytest.approx(4.0 / 3.0)
        assert result.F == pytest.approx(8.0 / 3.0)
        assert len(recwarn) == 0

    def test_rescaling_skips_imputations_dropped_by_d3(self):
        engine = SyntheticEngine(
            logliks={"m0": [-100.0, -50.0, -102.0, -98.0], "m1": [-90.0, None, -91.0, -89.0]}
        )
        r0 = [TestRecord(stat=1.0, df=5.0, scaling_factor=c) for c in (2.0, 100.0, 2.0, 2.0)]
        r1 = [TestRecord(stat=1.0, df=2.0, scaling_factor=c) for c in (1.25, 100.0, 1.25, 1.25)]
        m0 = make_collection([30.0, 99.0, 33.0, 27.0], 5, test="satorra.bentler", robust=r0, engine=engine)
        m1 = make_collection([8.0, 1.0, 9.0, 7.0], 2, lhs="m1", test="satorra.bentler", robust=r1, engine=engine)
        with pytest.warns(UserWarning, match="across 3 imputations"):
            result = pooled_lrt(m0, m1, test="D3")
        assert result.n_excluded == 1
        assert result.chisq == pytest.approx(60.0 / 7.0)
        assert result.chisq_scaling_factor == pytest.approx(2.5)
        assert result.chisq_scaled == pytest.approx(24.0 / 7.0)
        assert result.n_imputations_scaled is None
