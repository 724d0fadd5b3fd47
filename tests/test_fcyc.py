import pytest

from mallocsim.fcyc import (
    FcycParams,
    FunctionTimer,
    KBestSampler,
    TimingMethod,
    fcyc,
)


def test_sampler_keeps_values_sorted():
    sampler = KBestSampler(3, 0.01)
    for value in (5.0, 3.0, 4.0):
        sampler.add(value)
    assert sampler.values == (3.0, 4.0, 5.0)
    assert sampler.best() == 3.0
    assert sampler.count == 3


def test_sampler_keeps_only_k_smallest():
    sampler = KBestSampler(2, 0.01)
    for value in (10.0, 20.0, 5.0, 30.0):
        sampler.add(value)
    assert sampler.values == (5.0, 10.0)
    assert sampler.count == 4


def test_sampler_not_converged_when_spread():
    sampler = KBestSampler(3, 0.01)
    for value in (5.0, 3.0, 4.0):
        sampler.add(value)
    assert sampler.has_converged() is False


def test_sampler_converges_when_close():
    sampler = KBestSampler(3, 0.01)
    for value in (100.0, 100.5, 100.2):
        sampler.add(value)
    assert sampler.has_converged() is True


def test_sampler_needs_k_samples():
    sampler = KBestSampler(3, 0.01)
    sampler.add(1.0)
    sampler.add(1.0)
    assert sampler.has_converged() is False


def test_sampler_best_empty_raises():
    with pytest.raises(ValueError):
        KBestSampler(3, 0.01).best()


def test_sampler_rejects_zero_k():
    with pytest.raises(ValueError):
        KBestSampler(0, 0.01)


def test_params_defaults():
    params = FcycParams()
    assert (params.kbest, params.maxsamples, params.epsilon) == (3, 20, 0.01)
    assert params.cache_bytes == 1 << 19


def test_fcyc_maxsamples_one_runs_once():
    calls = []
    result = fcyc(calls.append, "arg", FcycParams(maxsamples=1))
    assert calls == ["arg"]
    assert result >= 0.0


def test_fcyc_kbest_one_converges_immediately():
    calls = []
    fcyc(calls.append, 1, FcycParams(kbest=1))
    assert len(calls) == 1


def test_fcyc_default_runs_between_k_and_max():
    calls = []
    fcyc(calls.append, None)
    assert 3 <= len(calls) <= 20


def test_fcyc_with_cache_clearing():
    calls = []
    result = fcyc(calls.append, None,
                  FcycParams(clear_cache=True, maxsamples=4, cache_bytes=4096))
    assert 1 <= len(calls) <= 4
    assert result >= 0.0


@pytest.mark.parametrize("method", [TimingMethod.GETTOD, TimingMethod.ITIMER])
def test_function_timer_runs_ten_times(method):
    calls = []
    timer = FunctionTimer(method, 0)
    seconds = timer.fsecs(calls.append, "x")
    assert calls == ["x"] * 10
    assert seconds >= 0.0


def test_function_timer_verbose_gettod(capsys):
    FunctionTimer(TimingMethod.GETTOD, 1)
    assert "Measuring performance with gettimeofday()." in capsys.readouterr().out


def test_function_timer_verbose_itimer(capsys):
    FunctionTimer(TimingMethod.ITIMER, 1)
    assert "Measuring performance with the interval timer." in capsys.readouterr().out


def test_function_timer_quiet(capsys):
    FunctionTimer()
    assert capsys.readouterr().out == ""