"""Unit tests for the metrics summary roll-up."""

from types import SimpleNamespace

from metricsync.analyzer.summary_engine import summarize


def _row(**values):
    base = dict(impressions=0, clicks=0, reach=0, conversions=0, spend="0", frequency=0.0)
    base.update(values)
    return SimpleNamespace(**base)


def test_empty_series_is_all_zero():
    summary = summarize([])
    assert summary.total_impressions == 0
    assert summary.total_spend == "0.00"
    assert summary.total_ctr == "0.00"
    assert summary.total_cpc == "0.00"
    assert summary.avg_frequency == "0.00"


def test_totals_and_rates():
    rows = [
        _row(impressions=1000, clicks=40, reach=700, conversions=2, spend="10.00", frequency=1.5),
        _row(impressions=3000, clicks=60, reach=900, conversions=3, spend="15.60", frequency=2.5),
    ]
    summary = summarize(rows)

    assert summary.total_impressions == 4000
    assert summary.total_clicks == 100
    assert summary.total_reach == 1600
    assert summary.total_conversions == 5
    assert summary.total_spend == "25.60"
    assert summary.avg_frequency == "2.00"
    assert summary.total_ctr == "2.50"
    assert summary.total_cpc == "0.26"


def test_no_clicks_means_no_cpc():
    summary = summarize([_row(impressions=500, spend="3.00")])
    assert summary.total_cpc == "0.00"
    assert summary.total_ctr == "0.00"


def test_bad_spend_counts_as_zero():
    summary = summarize([_row(spend="n/a", clicks=1), _row(spend="2.00", clicks=1)])
    assert summary.total_spend == "2.00"
    assert summary.total_cpc == "1.00"
