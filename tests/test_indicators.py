import math

import pytest

from ob_signal_bot.indicators import atr, swing_high, swing_low, true_range, trend_snr

from candles import c, flat, from_highs, from_lows


def test_true_range_uses_previous_close_gaps():
    assert true_range(11, 9, 10) == 2
    assert true_range(15, 14, 10) == 5  # gap up
    assert true_range(8, 7, 10) == 3  # gap down


def test_atr_needs_period_plus_one_candles():
    candles = [c(i, 10, 11, 9, 10) for i in range(4)]
    assert atr(candles[:3], 3) is None
    assert atr(candles, 3) == pytest.approx(2.0)
    assert atr(candles, 0) is None


def test_atr_averages_only_the_last_period_bars():
    candles = [c(0, 10, 30, 0, 10)] + [c(i, 10, 11, 9, 10) for i in range(1, 6)]
    # the wide first bar never enters the 3-bar window
    assert atr(candles, 3) == pytest.approx(2.0)


def test_atr_flat_series_is_zero():
    assert atr(flat(20), 14) == 0.0


def test_swing_high_strict_peak_is_found():
    candles = from_highs([1, 2, 5, 2, 1, 1, 1])
    sp = swing_high(candles, 2)
    assert sp is not None
    assert sp.index == 2
    assert sp.price == 5
    assert sp.kind == "high"


def test_swing_high_plateau_is_rejected():
    candles = from_highs([1, 2, 5, 5, 2, 1, 1, 1])
    assert swing_high(candles, 2) is None


def test_swing_high_never_confirms_with_the_last_bar():
    # index 3 only has the still-forming last bar on its right
    candles = from_highs([1, 2, 1, 3, 1])
    sp = swing_high(candles, 1)
    assert sp is not None
    assert sp.index == 1


def test_swing_high_returns_most_recent():
    candles = from_highs([1, 6, 1, 1, 4, 1, 1, 1])
    sp = swing_high(candles, 1)
    assert sp.index == 4


def test_swing_low_strict_trough_and_plateau():
    candles = from_lows([9, 8, 3, 8, 9, 9, 9])
    sp = swing_low(candles, 2)
    assert sp is not None
    assert (sp.index, sp.price, sp.kind) == (2, 3, "low")

    assert swing_low(from_lows([9, 8, 3, 3, 8, 9, 9, 9]), 2) is None


def test_swing_requires_symmetric_context():
    # 2*lookback+1 bars plus the excluded last bar are needed
    assert swing_high(from_highs([1, 2, 5, 2, 1]), 2) is None
    assert swing_high(from_highs([1, 2, 5, 2, 1, 1]), 2).index == 2


def test_snr_unavailable_for_constant_or_short_series():
    assert trend_snr([100.0] * 60, 50) is None
    assert trend_snr([1.0, 2.0, 3.0], 50) is None
    assert trend_snr([1.0, 2.0], 1) is None


def test_snr_prefers_cleaner_trends():
    clean = [i + (0.5 if i % 2 else -0.5) for i in range(40)]
    noisy = [i + (3.0 if i % 2 else -3.0) for i in range(40)]
    s_clean = trend_snr(clean, 40)
    s_noisy = trend_snr(noisy, 40)
    assert s_clean is not None and s_noisy is not None
    assert s_clean > s_noisy > 0


def test_snr_is_direction_agnostic_and_uses_last_window():
    up = [i + (0.5 if i % 2 else -0.5) for i in range(30)]
    down = [-x for x in up]
    assert trend_snr(down, 30) == pytest.approx(trend_snr(up, 30))

    padded = [1000.0, -1000.0] + up
    assert trend_snr(padded, 30) == pytest.approx(trend_snr(up, 30))


def test_snr_zero_slope_with_noise_is_zero_not_undefined():
    zigzag = [100.0 + (1.0 if i % 2 else -1.0) for i in range(20)]
    # odd length keeps the fitted slope near zero; value must be finite
    val = trend_snr(zigzag[:19], 19)
    assert val is not None
    assert math.isfinite(val)
    assert val < 0.2


def test_snr_unavailable_for_exactly_linear_series():
    # fitted residuals are pure float rounding here
    assert trend_snr([100.0 + 0.1 * i for i in range(50)], 50) is None
    assert trend_snr([20000.0 - 3.7 * i for i in range(60)], 50) is None
