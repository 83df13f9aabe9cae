"""Shared fixtures: synthetic provincial sheets and quarterly yield series."""

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest
import yaml

PERIOD_BLOCK = ["Quarter 1", "Quarter 2", "Semester 1", "Quarter 3", "Quarter 4", "Semester 2", "Annual"]


def build_raw_sheet(yields):
    """Lay out {(year, quarter): yield} the way the provincial sheet does.

    Row 0 carries the year once per block, row 1 the period labels, rows 2-3
    Irrigated/Rainfed and row 4 Total Palay with thousands separators.
    """
    years = sorted({y for y, _ in yields})
    year_row, period_row = ["Type"], ["Period"]
    irrigated, rainfed, total = ["Irrigated"], ["Rainfed"], ["Total Palay"]
    for year in years:
        for i, period in enumerate(PERIOD_BLOCK):
            year_row.append(year if i == 0 else None)
            period_row.append(period)
            if period.startswith("Quarter"):
                value = yields[(year, int(period.split()[-1]))]
            else:
                value = 99999.0
            irrigated.append(value * 0.7)
            rainfed.append(value * 0.3)
            total.append(f"{value:,.1f}")
    return pd.DataFrame([year_row, period_row, irrigated, rainfed, total])


@pytest.fixture
def raw_sheet():
    yields = {(y, q): 1000.0 * (y - 2007) + 100.0 * q for y in (2008, 2009, 2010) for q in (1, 2, 3, 4)}
    return build_raw_sheet(yields)


@pytest.fixture
def seasonal_series():
    rng = np.random.default_rng(7)
    n = 60
    t = np.arange(n)
    pattern = np.array([-300.0, -100.0, 50.0, 350.0])
    values = 5000.0 + 15.0 * t + pattern[t % 4] + rng.normal(0.0, 40.0, n)
    index = pd.date_range("2008-01-01", periods=n, freq="QS-JAN")
    return pd.Series(values, index=index, name="Yield")


@pytest.fixture
def yield_table(seasonal_series):
    return pd.DataFrame({
        "Date": seasonal_series.index,
        "Year": seasonal_series.index.year,
        "Quarter": seasonal_series.index.quarter,
        "Yield": seasonal_series.to_numpy(),
    })


@pytest.fixture
def seasonal_raw_sheet(seasonal_series):
    yields = {(ts.year, ts.quarter): float(v) for ts, v in seasonal_series.items()}
    return build_raw_sheet(yields)


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    """A small-search config rooted in tmp_path; cwd moved there for README output."""
    for var in ("DATA_DIR", "OUTPUT_DIR", "MODELS_DIR"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    (tmp_path / "data").mkdir()
    cfg = {
        "paths": {
            "data_dir": str(tmp_path / "data"),
            "output_dir": str(tmp_path / "outputs"),
            "models_dir": str(tmp_path / "models"),
        },
        "input": {"spreadsheet": "raw.xlsx", "year_row": 0, "period_row": 1, "yield_row": 4,
                  "clean_csv": "clean.csv"},
        "identification": {"alpha": 0.05, "period": 4, "max_d": 2, "max_D": 1},
        "models": {
            "search": {"max_p": 1, "max_q": 1, "max_P": 1, "max_Q": 1, "max_order": 2, "trace": False},
            "manual": {"order": [0, 1, 1], "seasonal_order": [0, 1, 1]},
            "forecast_model": "manual",
        },
        "forecast": {"horizon": 6, "levels": [80, 95]},
        "output": {"save_model": True},
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(cfg), encoding="utf-8")
    return path
