"""Tests for D2 statistic pooling."""

import numpy as np
import pytest
from scipy import stats

from pooled_lrt._context import PoolingContext
from pooled_lrt._methods.statistic import calculate_d2, pool_statistics
from pooled_lrt.fits import TestRecord

from synthetic import SyntheticEngine, make_collection


class TestCalculateD2:
    """Closed-form D2 combination."""

    def test_identical_statistics_have_zero_ariv(self):
        out = calculate_d2([7.0] * 5, 4)
        assert out["ariv"] == 0.0
        assert out["F"] == pytest.approx(1.75)
        assert np.isposinf(out["df2"])
        assert out["fmi"] == 0.0

    def test_asymptotic_form(self):
        out = calculate_d2([7.0] * 5, 4, asymptotic=True)
        assert set(out) == {"chisq", "df", "pvalue", "ariv", "fmi"}
        assert out["chisq"] == pytest.approx(7.0)
        assert out["df"] == 4
        assert out["pvalue"] == pytest.approx(stats.chi2.sf(7.0, 4))

    def test_known_values(self):
        # sqrt(w) = [2, 3, 4] has sample variance 1.
        out = calculate_d2([4.0, 9.0, 16.0], 2)
        assert out["ariv"] == pytest.approx(4.0 / 3.0)
        assert out["F"] == pytest.approx(29.0 / 14.0)
        assert out["df2"] == pytest.approx(0.5 * 2 * 1.75**2)
        assert out["fmi"] == pytest.approx(4.0 / 7.0)
        assert out["pvalue"] == pytest.approx(stats.f.sf(29.0 / 14.0, 2, 3.0625))

    def test_negative_statistics_clamped(self):
        a = calculate_d2([-1.0, 4.0], 1)
        b = calculate_d2([0.0, 4.0], 1)
        assert a == b

    def test_nan_statistics_dropped(self):
        a = calculate_d2([np.nan, 4.0, 9.0], 2)
        b = calculate_d2([4.0, 9.0], 2)
        assert a == b

    def test_single_imputation_reduces_to_plain_test(self):
        out = calculate_d2([6.0], 3)
        assert out["ariv"] == 0.0
        assert out["F"] == pytest.approx(2.0)
        assert out["pvalue"] == pytest.approx(stats.chi2.sf(6.0, 3))

    def test_f_pvalue_matches_chisq_pvalue_when_ariv_zero(self):
        f_form = calculate_d2([5.0, 5.0, 5.0], 2)
        chi_form = calculate_d2([5.0, 5.0, 5.0], 2, asymptotic=True)
        assert f_form["pvalue"] == pytest.approx(chi_form["pvalue"])

    def test_records_ariv_on_context(self):
        ctx = PoolingContext()
        out = calculate_d2([4.0, 9.0, 16.0], 2, ctx=ctx)
        assert ctx.ariv == out["ariv"]

    def test_rejects_all_nan(self):
        with pytest.raises(ValueError, match="No test statistics"):
            calculate_d2([np.nan, np.nan], 2)

    def test_rejects_non_positive_df(self):
        with pytest.raises(ValueError, match="Degrees of freedom"):
            calculate_d2([1.0, 2.0], 0)


class TestPoolStatistics:
    """D2 applied to fit collections."""

    def test_single_model_adds_npar_and_ntotal(self):
        model = make_collection([6.0, 6.0], 3, ntotal=250)
        out = pool_statistics(model, None, model.convergence, asymptotic=True)
        assert out["chisq"] == pytest.approx(6.0)
        assert out["npar"] == 2
        assert out["ntotal"] == 250

    def test_difference_of_pair(self):
        m0 = make_collection([15, 14, 16, 13, 17], 10)
        m1 = make_collection([8, 7, 9, 6, 10], 6, lhs="m1")
        out = pool_statistics(m0, m1, m0.convergence, asymptotic=True)
        assert out["chisq"] == pytest.approx(7.0)
        assert out["df"] == pytest.approx(4.0)
        assert out["ariv"] == 0.0
        assert "npar" not in out

    def test_mean_df_difference(self):
        m0 = make_collection([10, 10], [5, 7])
        m1 = make_collection([4, 4], [3, 3], lhs="m1")
        out = pool_statistics(m0, m1, m0.convergence, asymptotic=True)
        assert out["df"] == pytest.approx(3.0)

    def test_only_usable_imputations_enter(self):
        m0 = make_collection([6.0, 100.0, 6.0], 3)
        usable = np.array([True, False, True])
        out = pool_statistics(m0, None, usable, asymptotic=True)
        assert out["chisq"] == pytest.approx(6.0)

    def test_single_model_pool_robust(self):
        robust = [TestRecord(stat=3.0, df=2.0, scaling_factor=2.0)] * 3
        model = make_collection([6.0] * 3, 2, test="satorra.bentler", robust=robust)
        out = pool_statistics(model, None, model.convergence, asymptotic=True, pool_robust=True)
        assert set(out) == {"chisq_scaled", "df_scaled", "pvalue_scaled", "ariv_scaled", "fmi_scaled"}
        assert out["chisq_scaled"] == pytest.approx(3.0)

    def test_single_model_pool_robust_needs_records(self):
        model = make_collection([6.0] * 3, 2, test="satorra.bentler")
        with pytest.raises(ValueError, match="robust test record"):
            pool_statistics(model, None, model.convergence, pool_robust=True)


class TestRobustDifferencePooling:
    """Per-imputation robust difference tests re-derived through the engine."""

    def _pair(self, engine):
        m0 = make_collection([12.0] * 3, 5, test="satorra.bentler", engine=engine)
        m1 = make_collection([4.0] * 3, 2, lhs="m1", test="satorra.bentler", engine=engine)
        return m0, m1

    def test_pools_engine_differences(self):
        engine = SyntheticEngine(differences=[(4.0, 3.0)] * 3)
        m0, m1 = self._pair(engine)
        out = pool_statistics(m0, m1, m0.convergence, asymptotic=True, pool_robust=True)
        assert out["chisq_scaled"] == pytest.approx(4.0)
        assert out["df_scaled"] == pytest.approx(3.0)
        assert [c[0] for c in engine.calls] == ["fit"] * 3

    def test_failures_excluded_and_counted(self):
        engine = SyntheticEngine(differences=[(4.0, 3.0), None, (4.0, 3.0)], refit_fails=frozenset({0}))
        m0, m1 = self._pair(engine)
        ctx = PoolingContext()
        out = pool_statistics(m0, m1, m0.convergence, asymptotic=True, pool_robust=True, ctx=ctx)
        assert ctx.n_excluded == 2
        assert [i for i, _ in ctx.failures] == [0, 1]
        assert ctx.failures[0][1].startswith("fit failed")
        assert ctx.failures[1][1].startswith("difference test failed")
        assert out["chisq_scaled"] == pytest.approx(4.0)

    def test_all_failures_raise(self):
        engine = SyntheticEngine(differences=[None] * 3)
        m0, m1 = self._pair(engine)
        with pytest.raises(RuntimeError, match="No success"):
            pool_statistics(m0, m1, m0.convergence, pool_robust=True)

    def test_needs_engine(self):
        m0 = make_collection([12.0] * 3, 5, test="satorra.bentler")
        m1 = make_collection([4.0] * 3, 2, lhs="m1", test="satorra.bentler")
        with pytest.raises(ValueError, match="fitting engine"):
            pool_statistics(m0, m1, m0.convergence, pool_robust=True)
