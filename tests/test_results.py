"""Tests for PooledResult access and serialisation."""

import json

import numpy as np
import pytest

from pooled_lrt._context import PoolingContext
from pooled_lrt._results import PooledResult, _numpy_to_python


def _result(**kwargs):
    base = dict(method="D2", asymptotic=False, n_imputations=5)
    base.update(kwargs)
    return PooledResult(**base)


class TestDictAccess:
    def test_bracket_access(self):
        result = _result(F=1.75, df1=4.0)
        assert result["F"] == 1.75
        assert result["method"] == "D2"

    def test_unpopulated_field_is_a_miss(self):
        result = _result(F=1.75)
        with pytest.raises(KeyError):
            result["chisq"]
        assert result.get("chisq") is None
        assert result.get("chisq", 0.0) == 0.0
        assert "chisq" not in result
        assert "F" in result

    def test_unknown_key(self):
        result = _result()
        with pytest.raises(KeyError):
            result["nonexistent"]
        assert "nonexistent" not in result
        assert 42 not in result

    def test_frozen(self):
        result = _result(F=1.0)
        with pytest.raises(AttributeError):
            result.F = 2.0


class TestToDict:
    def test_only_populated_statistics(self):
        result = _result(chisq=7.0, df=4.0, pvalue=0.13, asymptotic=True)
        assert result.to_dict() == {
            "method": "D2",
            "asymptotic": True,
            "n_imputations": 5,
            "n_excluded": 0,
            "notices": (),
            "chisq": 7.0,
            "df": 4.0,
            "pvalue": 0.13,
        }

    def test_context_excluded(self):
        result = _result(F=1.0, context=PoolingContext())
        assert "context" not in result.to_dict()

    def test_json_serialisable(self):
        result = _result(F=np.float64(1.5), df2=np.float64(np.inf), notices=("a",))
        payload = result.to_dict()
        assert type(payload["F"]) is float
        json.dumps(payload)

    def test_statistic_fields(self):
        names = PooledResult.statistic_fields()
        assert {"chisq", "F", "chisq_scaled", "bic2"} <= names
        assert "method" not in names
        assert "context" not in names


class TestNumpyToPython:
    def test_nested(self):
        out = _numpy_to_python({"a": np.array([1, 2]), "b": (np.int64(3), np.bool_(True))})
        assert out == {"a": [1, 2], "b": (3, True)}
        assert type(out["b"][1]) is bool
