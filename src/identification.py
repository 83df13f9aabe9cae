import argparse
import os
import sys
import warnings
import numpy as np
import pandas as pd
import statsmodels
from dataclasses import dataclass
from typing import Dict
from statsmodels.tsa.stattools import adfuller, kpss
from statsmodels.tsa.seasonal import STL
from statsmodels.tools.sm_exceptions import InterpolationWarning
from utils import load_config, ensure_directories, clean_csv_path
from clean_data import load_clean_csv

# Seasonal strength above this calls for a seasonal difference
SEASONAL_STRENGTH_THRESHOLD = 0.64
# LOESS window for the STL seasonal component (7 + 4)
STL_SEASONAL_WINDOW = 11
MIN_ADF_OBS = 8


@dataclass
class AdfResult:
    statistic: float
    p_value: float
    lags: int
    nobs: int
    is_stationary: bool


@dataclass
class IdentificationResult:
    adf_raw: AdfResult
    seasonal_diffs: int
    regular_diffs: int
    stationary: pd.Series
    adf_differenced: AdfResult

    def summary_row(self) -> Dict:
        return {
            'adf_raw_statistic': self.adf_raw.statistic,
            'adf_raw_p_value': self.adf_raw.p_value,
            'adf_raw_lags': self.adf_raw.lags,
            'seasonal_diffs_D': self.seasonal_diffs,
            'regular_diffs_d': self.regular_diffs,
            'n_differenced': int(len(self.stationary)),
            'adf_diff_statistic': self.adf_differenced.statistic,
            'adf_diff_p_value': self.adf_differenced.p_value,
            'adf_diff_lags': self.adf_differenced.lags,
        }


def build_quarterly_series(df: pd.DataFrame) -> pd.Series:
    """Turn the clean yield table into a Series on a quarter-start index."""
    if len(df) == 0:
        raise ValueError("Yield table is empty")
    if df['Yield'].isna().any():
        raise ValueError(f"Yield has {int(df['Yield'].isna().sum())} missing values; fill them before modelling")
    index = pd.DatetimeIndex(pd.to_datetime(df['Date']))
    expected = pd.date_range(start=index[0], periods=len(index), freq='QS-JAN')
    if not index.equals(expected):
        raise ValueError("Quarterly sequence has gaps or misaligned dates")
    return pd.Series(df['Yield'].to_numpy(dtype=float), index=expected, name='Yield')


def _is_constant(x: pd.Series) -> bool:
    return len(x) == 0 or float(np.ptp(np.asarray(x, dtype=float))) == 0.0


def adf_test(series: pd.Series, alpha: float = 0.05) -> AdfResult:
    """Augmented Dickey-Fuller test with constant and trend.

    H0: the series has a unit root (not stationary). The lag order is fixed
    at trunc((n-1)^(1/3)) rather than chosen by information criterion.
    """
    x = np.asarray(pd.Series(series).dropna(), dtype=float)
    if len(x) < MIN_ADF_OBS:
        raise ValueError(f"ADF test needs at least {MIN_ADF_OBS} observations, got {len(x)}")
    k = int(np.trunc((len(x) - 1) ** (1.0 / 3.0)))
    res = adfuller(x, maxlag=k, regression='ct', autolag=None)
    statistic, p_value, usedlag, nobs = float(res[0]), float(res[1]), int(res[2]), int(res[3])
    return AdfResult(statistic, p_value, usedlag, nobs, p_value < alpha)


def _kpss_rejects(x: np.ndarray, alpha: float) -> bool:
    nlags = int(np.trunc(4 * (len(x) / 100.0) ** 0.25))
    with warnings.catch_warnings():
        # p-values outside the lookup table are clipped to [0.01, 0.1]
        warnings.simplefilter('ignore', InterpolationWarning)
        _, p_value, _, _ = kpss(x, regression='c', nlags=nlags)
    return p_value < alpha


def ndiffs(series: pd.Series, alpha: float = 0.05, max_d: int = 2) -> int:
    """Number of first differences needed, by repeated KPSS level tests."""
    x = pd.Series(series).dropna().astype(float)
    d = 0
    while d < max_d:
        if len(x) < 3 or _is_constant(x):
            break
        if not _kpss_rejects(x.to_numpy(), alpha):
            break
        x = x.diff().dropna()
        d += 1
    return d


def seasonal_strength(series: pd.Series, period: int = 4) -> float:
    x = np.asarray(pd.Series(series).dropna(), dtype=float)
    fit = STL(x, period=period, seasonal=STL_SEASONAL_WINDOW).fit()
    combined = np.var(fit.seasonal + fit.resid)
    if combined == 0:
        return 0.0
    return max(0.0, 1.0 - float(np.var(fit.resid)) / float(combined))


def nsdiffs(series: pd.Series, period: int = 4, max_D: int = 1) -> int:
    """Number of seasonal differences needed, by STL seasonal strength."""
    x = pd.Series(series).dropna().astype(float)
    D = 0
    while D < max_D:
        if len(x) <= 2 * period or _is_constant(x):
            break
        if seasonal_strength(x, period) <= SEASONAL_STRENGTH_THRESHOLD:
            break
        x = x.diff(period).dropna()
        D += 1
    return D


def apply_differencing(series: pd.Series, d: int, D: int, period: int = 4) -> pd.Series:
    # Seasonal differences first, then regular ones
    x = series.copy()
    for _ in range(D):
        x = x.diff(period)
    for _ in range(d):
        x = x.diff()
    return x.dropna()


def identify(series: pd.Series, alpha: float = 0.05, period: int = 4, max_d: int = 2, max_D: int = 1) -> IdentificationResult:
    adf_raw = adf_test(series, alpha)
    D = nsdiffs(series, period, max_D)
    d = ndiffs(apply_differencing(series, 0, D, period), alpha, max_d)
    stationary = apply_differencing(series, d, D, period)
    adf_diff = adf_test(stationary, alpha)
    return IdentificationResult(adf_raw, D, d, stationary, adf_diff)


def identification_settings(cfg: Dict) -> Dict:
    id_cfg = cfg.get('identification', {}) or {}
    return {
        'alpha': float(id_cfg.get('alpha', 0.05)),
        'period': int(id_cfg.get('period', 4)),
        'max_d': int(id_cfg.get('max_d', 2)),
        'max_D': int(id_cfg.get('max_D', 1)),
    }


def _print_adf(title: str, res: AdfResult) -> None:
    print(f"--- ADF TEST RESULTS ({title}) ---")
    print(f"Dickey-Fuller = {res.statistic:.4f}, Lag order = {res.lags}, p-value = {res.p_value:.4f}")
    print("Stationary (reject unit root)" if res.is_stationary else "Not stationary (unit root not rejected)")


def main(config_path: str) -> None:
    cfg = load_config(config_path)
    output_dir = cfg['paths']['output_dir']
    ensure_directories(output_dir, cfg['paths']['models_dir'])

    print(f"Python: {sys.version.split()[0]}")
    print(f"statsmodels: {statsmodels.__version__}")

    settings = identification_settings(cfg)
    series = build_quarterly_series(load_clean_csv(clean_csv_path(cfg)))
    print(f"Series: {len(series)} quarters starting {series.index[0]:%Y}-Q{series.index[0].quarter}")

    result = identify(series, **settings)

    _print_adf('RAW DATA', result.adf_raw)
    print(f"Number of Seasonal Differences needed (D): {result.seasonal_diffs}")
    print(f"Number of Regular Differences needed (d): {result.regular_diffs}")
    if result.seasonal_diffs > 0:
        print(f"Applied Seasonal Differencing (Lag {settings['period']})")
    if result.regular_diffs > 0:
        print("Applied Regular Differencing")
    _print_adf('AFTER DIFFERENCING', result.adf_differenced)

    stationary_path = os.path.join(output_dir, 'stationary_series.csv')
    result.stationary.rename('Differenced').to_frame().rename_axis('Date').to_csv(stationary_path, date_format='%Y-%m-%d')
    summary_path = os.path.join(output_dir, 'identification_summary.csv')
    pd.DataFrame([result.summary_row()]).to_csv(summary_path, index=False)
    print(f"Wrote differenced series: {stationary_path}")
    print(f"Wrote identification summary: {summary_path}")


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Stationarity checks and differencing for the quarterly yield series')
    parser.add_argument('--config', type=str, required=True, help='Path to config.yaml')
    args = parser.parse_args()
    main(args.config)
