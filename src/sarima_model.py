import argparse
import os
import sys
import warnings
import numpy as np
import pandas as pd
import statsmodels
from dataclasses import dataclass
from typing import Dict, Sequence, Tuple
from sklearn.metrics import mean_squared_error, mean_absolute_error, mean_absolute_percentage_error
from statsmodels.stats.diagnostic import acorr_ljungbox
from statsmodels.tsa.statespace.sarimax import SARIMAX
from statsmodels.tools.sm_exceptions import ConvergenceWarning
from utils import load_config, ensure_directories, clean_csv_path, save_model, write_readme
from clean_data import load_clean_csv
from identification import build_quarterly_series, identification_settings, nsdiffs, ndiffs, apply_differencing


@dataclass
class OrderSearchResult:
    results: object
    order: Tuple[int, int, int]
    seasonal_order: Tuple[int, int, int, int]
    include_constant: bool
    trace: pd.DataFrame


@dataclass
class LjungBoxResult:
    statistic: float
    p_value: float
    lag: int
    df: int
    is_white_noise: bool


def format_model(order: Sequence[int], seasonal_order: Sequence[int], include_constant: bool = False) -> str:
    p, d, q = order
    P, D, Q, m = seasonal_order
    label = f"ARIMA({p},{d},{q})({P},{D},{Q})[{m}]"
    if include_constant:
        label += " with drift" if d + D == 1 else " with non-zero mean"
    return label


def fit_sarima(series: pd.Series, order: Sequence[int], seasonal_order: Sequence[int], include_constant: bool = False):
    """Fit a seasonal ARIMA by exact maximum likelihood.

    With one order of differencing the constant acts as a drift term on
    the differenced series.
    """
    model = SARIMAX(
        series,
        order=tuple(order),
        seasonal_order=tuple(seasonal_order),
        trend='c' if include_constant else 'n',
        enforce_stationarity=True,
        enforce_invertibility=True,
    )
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', ConvergenceWarning)
        # Non-stationary / non-invertible starting parameters are reset to zero
        warnings.simplefilter('ignore', UserWarning)
        return model.fit(disp=False, maxiter=200)


def _model_df(results) -> int:
    p, _, q = results.model.order
    P, _, Q, _ = results.model.seasonal_order
    return int(p + q + P + Q)


def search_sarima_orders(series: pd.Series, d: int, D: int, period: int = 4, max_p: int = 5, max_q: int = 5,
                         max_P: int = 2, max_Q: int = 2, max_order: int = 5, trace: bool = True) -> OrderSearchResult:
    """
    Exhaustive search of (p, q, P, Q) with fixed d and D, selected by AICc.

    When d + D <= 1 every order is fitted both with and without a constant
    (drift or mean); with more differencing only the constant-free model.
    """
    constant_options = (True, False) if (d + D) <= 1 else (False,)
    rows = []
    best = None
    for p in range(max_p + 1):
        for q in range(max_q + 1):
            for P in range(max_P + 1):
                for Q in range(max_Q + 1):
                    if p + q + P + Q > max_order:
                        continue
                    order = (p, d, q)
                    seasonal_order = (P, D, Q, period)
                    for include_constant in constant_options:
                        try:
                            res = fit_sarima(series, order, seasonal_order, include_constant)
                            aicc = float(res.aicc)
                        except (ValueError, np.linalg.LinAlgError):
                            res, aicc = None, np.inf
                        if not np.isfinite(aicc):
                            aicc = np.inf
                        label = format_model(order, seasonal_order, include_constant)
                        if trace:
                            print(f" {label:<45}: {aicc:.4f}" if np.isfinite(aicc) else f" {label:<45}: Inf")
                        rows.append({'model': label, 'p': p, 'd': d, 'q': q, 'P': P, 'D': D, 'Q': Q,
                                     'period': period, 'include_constant': include_constant, 'aicc': aicc})
                        if res is not None and np.isfinite(aicc) and (best is None or aicc < best[0]):
                            best = (aicc, res, order, seasonal_order, include_constant)

    if best is None:
        raise RuntimeError("No SARIMA candidate could be fitted")
    trace_df = pd.DataFrame(rows).sort_values('aicc', kind='stable').reset_index(drop=True)
    if trace:
        print(f"\n Best model: {format_model(best[2], best[3], best[4])}")
    return OrderSearchResult(best[1], best[2], best[3], best[4], trace_df)


def ljung_box_test(results, period: int = 4, alpha: float = 0.05) -> LjungBoxResult:
    """Ljung-Box test on residuals after the diffuse burn-in period."""
    resid = np.asarray(results.resid, dtype=float)[results.loglikelihood_burn:]
    df = _model_df(results)
    lag = max(df + 3, min(2 * period, int(round(len(resid) / 5))))
    lb = acorr_ljungbox(resid, lags=[lag], model_df=df)
    statistic = float(lb['lb_stat'].iloc[0])
    p_value = float(lb['lb_pvalue'].iloc[0])
    return LjungBoxResult(statistic, p_value, int(lag), df, bool(p_value > alpha))


def forecast_sarima(results, horizon: int = 6, levels: Sequence[int] = (80, 95)) -> pd.DataFrame:
    fc = results.get_forecast(steps=horizon)
    mean = fc.predicted_mean
    dates = mean.index
    if not isinstance(dates, pd.DatetimeIndex):
        raise ValueError("Model must be fitted on a quarterly series with a DatetimeIndex")
    out = pd.DataFrame({
        'Date': dates,
        'Year': dates.year,
        'Quarter': dates.quarter,
        'Forecast': mean.to_numpy(),
    })
    for level in levels:
        ci = fc.conf_int(alpha=1 - level / 100.0)
        out[f'Lo{level}'] = ci.iloc[:, 0].to_numpy()
        out[f'Hi{level}'] = ci.iloc[:, 1].to_numpy()
    return out


def compare_models(models: Dict[str, object]) -> pd.DataFrame:
    rows = []
    for name, res in models.items():
        burn = res.loglikelihood_burn
        y_true = np.asarray(res.model.endog, dtype=float).ravel()[burn:]
        y_fit = np.asarray(res.fittedvalues, dtype=float)[burn:]
        include_constant = res.model.trend == 'c'
        rows.append({
            'model': name,
            'specification': format_model(res.model.order, res.model.seasonal_order, include_constant),
            'order': str(tuple(res.model.order)),
            'seasonal_order': str(tuple(res.model.seasonal_order)),
            'aic': float(res.aic),
            'aicc': float(res.aicc),
            'bic': float(res.bic),
            'rmse': float(np.sqrt(mean_squared_error(y_true, y_fit))),
            'mae': float(mean_absolute_error(y_true, y_fit)),
            'mape': float(mean_absolute_percentage_error(y_true, y_fit) * 100),
        })
    return pd.DataFrame(rows).sort_values('aicc').reset_index(drop=True)


def main(config_path: str) -> None:
    cfg = load_config(config_path)
    output_dir = cfg['paths']['output_dir']
    ensure_directories(output_dir, cfg['paths']['models_dir'])

    print(f"Python: {sys.version.split()[0]}")
    print(f"numpy: {np.__version__}")
    print(f"pandas: {pd.__version__}")
    print(f"statsmodels: {statsmodels.__version__}")

    settings = identification_settings(cfg)
    period = settings['period']
    models_cfg = cfg.get('models', {}) or {}
    search_cfg = models_cfg.get('search', {}) or {}
    manual_cfg = models_cfg.get('manual', {}) or {}
    fc_cfg = cfg.get('forecast', {}) or {}
    lb_alpha = float(models_cfg.get('ljung_box_alpha', 0.05))

    series = build_quarterly_series(load_clean_csv(clean_csv_path(cfg)))
    D = nsdiffs(series, period, settings['max_D'])
    d = ndiffs(apply_differencing(series, 0, D, period), settings['alpha'], settings['max_d'])
    print(f"Differencing used for order search: d={d}, D={D}")

    # Automatic model selection
    search = search_sarima_orders(
        series, d, D, period,
        max_p=int(search_cfg.get('max_p', 5)),
        max_q=int(search_cfg.get('max_q', 5)),
        max_P=int(search_cfg.get('max_P', 2)),
        max_Q=int(search_cfg.get('max_Q', 2)),
        max_order=int(search_cfg.get('max_order', 5)),
        trace=bool(search_cfg.get('trace', True)),
    )
    print("--- BEST MODEL FOUND BY ORDER SEARCH ---")
    print(search.results.summary())

    # Manual model read off the ACF/PACF plots
    manual_order = tuple(manual_cfg.get('order', [0, 1, 1]))
    manual_seasonal = tuple(manual_cfg.get('seasonal_order', [0, 1, 1])) + (period,)
    manual_results = fit_sarima(series, manual_order, manual_seasonal)
    print("--- MANUAL MODEL (FROM PLOTS) ---")
    print(manual_results.summary())

    print(f"Auto ARIMA AICc: {search.results.aicc:.4f}")
    print(f"Manual Model AICc: {manual_results.aicc:.4f}")

    models = {'auto': search.results, 'manual': manual_results}
    comparison = compare_models(models)

    checks = []
    for name, res in models.items():
        lb = ljung_box_test(res, period, lb_alpha)
        print(f"Ljung-Box test ({name}): Q* = {lb.statistic:.4f}, df = {lb.lag - lb.df}, p-value = {lb.p_value:.4f} "
              f"-> {'white noise' if lb.is_white_noise else 'pattern left in residuals'}")
        checks.append({'model': name, 'lb_stat': lb.statistic, 'lb_pvalue': lb.p_value, 'lag': lb.lag,
                       'model_df': lb.df, 'is_white_noise': lb.is_white_noise})

    forecast_model = models_cfg.get('forecast_model', 'manual')
    if forecast_model not in models:
        raise ValueError(f"Unknown forecast_model: {forecast_model} (expected one of {sorted(models)})")
    forecast_df = forecast_sarima(models[forecast_model], int(fc_cfg.get('horizon', 6)), fc_cfg.get('levels', [80, 95]))
    print(f"--- FORECAST ({forecast_model}) ---")
    print(forecast_df.to_string(index=False))

    comparison_path = os.path.join(output_dir, 'model_comparison.csv')
    comparison.to_csv(comparison_path, index=False)
    trace_path = os.path.join(output_dir, 'order_search_trace.csv')
    search.trace.to_csv(trace_path, index=False)
    checks_path = os.path.join(output_dir, 'residual_checks.csv')
    pd.DataFrame(checks).to_csv(checks_path, index=False)
    forecast_path = os.path.join(output_dir, 'forecast.csv')
    forecast_df.to_csv(forecast_path, index=False, date_format='%Y-%m-%d')
    print(f"Wrote model comparison: {comparison_path}")
    print(f"Wrote order search trace: {trace_path}")
    print(f"Wrote residual checks: {checks_path}")
    print(f"Wrote forecast: {forecast_path}")

    if (cfg.get('output', {}) or {}).get('save_model', True):
        for name, res in models.items():
            model_path = save_model(res, cfg['paths']['models_dir'], name)
            print(f"Saved model to: {model_path}")
    else:
        print("Model saving skipped (configured to not save)")

    write_readme(cfg)


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Select, validate and forecast a seasonal ARIMA model of quarterly rice yield')
    parser.add_argument('--config', type=str, required=True, help='Path to config.yaml')
    args = parser.parse_args()
    main(args.config)
