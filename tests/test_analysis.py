import numpy as np
import pytest

from hrv_live.hrv_metrics import metrics
from hrv_live.hrv_metrics.analysis import analyze_intervals, compute_freq_domain, dfa_alpha1


def _respiratory_series(n=300, freq_hz=0.25):
    # ~1 s beats modulated at a respiratory (HF) frequency
    i = np.arange(n)
    return 1000.0 + 40.0 * np.sin(2 * np.pi * freq_hz * i)


def test_hf_modulation_dominates_hf_band():
    result = compute_freq_domain(_respiratory_series())
    powers = result["band_powers"]

    assert powers["HF"] > powers["LF"]
    assert result["lf_hf_ratio"] == pytest.approx(powers["LF"] / powers["HF"])
    assert len(result["freq"]) == len(result["psd"])


def test_lf_modulation_dominates_lf_band():
    result = compute_freq_domain(_respiratory_series(freq_hz=0.1))
    assert result["band_powers"]["LF"] > result["band_powers"]["HF"]


def test_short_series_has_no_spectrum():
    result = compute_freq_domain([800.0, 810.0])
    assert result["freq"] == []
    assert result["band_powers"] == {"VLF": None, "LF": None, "HF": None}
    assert result["lf_hf_ratio"] is None


def test_dfa_alpha1_of_white_noise():
    rng = np.random.default_rng(7)
    rr = 800.0 + 40.0 * rng.standard_normal(1024)
    alpha = dfa_alpha1(rr)
    assert alpha is not None
    assert 0.3 < alpha < 0.8


def test_dfa_alpha1_needs_enough_beats():
    assert dfa_alpha1([800.0] * 20) is None


def test_analyze_intervals_keys():
    result = analyze_intervals(_respiratory_series(120).tolist())
    assert set(result) == {"time_domain", "freq_domain", "dfa_alpha1"}
    assert result["time_domain"]["RMSSD_ms"] > 0


def test_time_domain_metrics():
    rr = [800.0, 900.0, 840.0, 845.0]
    td = metrics.compute_time_domain_metrics(rr)

    assert td["NN50_count"] == 2
    assert td["pNN50_percent"] == pytest.approx(200.0 / 3.0)
    assert td["HR_max_bpm"] == pytest.approx(75.0)
    assert td["HR_min_bpm"] == pytest.approx(60000.0 / 900.0)
    assert td["SD1_ms"] is not None


def test_time_domain_metrics_undefined_values():
    td = metrics.compute_time_domain_metrics([800.0])
    assert td["RMSSD_ms"] is None
    assert td["SDRR_ms"] is None
    assert td["SD1_ms"] is None
    assert td["NN50_count"] == 0
    assert td["HR_mean_bpm"] == pytest.approx(75.0)
