"""Tests for head lag evaluation"""

import pytest

from bakerwatch.errors import EvalError, FetchError
from bakerwatch.lag import evaluate
from bakerwatch.models import Observation, Source


def local(height=None, error=None):
    return Observation(source=Source.LOCAL, height=height, error=error)


def remote(height=None, error=None):
    return Observation(source=Source.REMOTE, height=height, error=error)


# ============================================
# Lag arithmetic
# ============================================


def test_small_lag_within_threshold():
    """local=100, remote=101, max_lag=2"""
    result = evaluate(local(100), remote(101), 2)

    assert result.lag == 1
    assert result.within_threshold is True
    assert (result.local_height, result.remote_height) == (100, 101)


def test_large_lag_outside_threshold():
    """local=100, remote=150, max_lag=2"""
    result = evaluate(local(100), remote(150), 2)

    assert result.lag == 50
    assert result.within_threshold is False


def test_lag_equal_to_threshold_is_acceptable():
    assert evaluate(local(100), remote(102), 2).within_threshold is True
    assert evaluate(local(100), remote(103), 2).within_threshold is False


@pytest.mark.parametrize("local_height,remote_height", [(105, 100), (101, 100), (5000, 10)])
def test_negative_lag_is_always_within_threshold(local_height, remote_height):
    """Known asymmetry: a node ahead of the sampled network head is never flagged"""
    result = evaluate(local(local_height), remote(remote_height), 0)

    assert result.lag == remote_height - local_height
    assert result.lag < 0
    assert result.within_threshold is True


def test_zero_threshold():
    assert evaluate(local(7), remote(7), 0).within_threshold is True
    assert evaluate(local(7), remote(8), 0).within_threshold is False


# ============================================
# Missing data
# ============================================


def test_remote_fetch_error_is_missing_data():
    failed = remote(error=FetchError("https://ghostnet.teztnets.xyz", "timed out after 10s"))

    with pytest.raises(EvalError) as excinfo:
        evaluate(local(100), failed, 2)

    assert excinfo.value.kind == EvalError.MISSING_DATA
    assert "timed out" in str(excinfo.value)


def test_absent_local_height_is_missing_data():
    with pytest.raises(EvalError) as excinfo:
        evaluate(local(None), remote(100), 2)

    assert excinfo.value.kind == EvalError.MISSING_DATA
    assert "local" in str(excinfo.value)
