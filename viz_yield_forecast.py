#!/usr/bin/env python3
"""
Rice Yield Forecast Visualization Script

This script renders the exploratory, identification, diagnostic and forecast
figures for the quarterly Pangasinan rice yield series using Matplotlib and
Seaborn, saving high-resolution PNGs under <output_dir>/figures.

Usage:
    python viz_yield_forecast.py --config config.yaml --model_name manual
    python viz_yield_forecast.py --config config.yaml --model_name auto
"""

import argparse
import os
import sys
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import matplotlib.dates as mdates
import seaborn as sns
import yaml
from matplotlib.ticker import FuncFormatter
from scipy import stats
from statsmodels.graphics.tsaplots import plot_acf, plot_pacf
from statsmodels.nonparametric.smoothers_lowess import lowess
from utils import load_config, ensure_directories, clean_csv_path, load_latest_model
from clean_data import load_clean_csv
from sarima_model import ljung_box_test, format_model

comma_formatter = FuncFormatter(lambda x, _: f'{x:,.0f}')


def parse_arguments():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Visualize rice yield history, diagnostics and forecasts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python viz_yield_forecast.py --config config.yaml --model_name manual
    python viz_yield_forecast.py --config config.yaml --model_name auto
        """
    )
    parser.add_argument(
        "--config",
        type=str,
        required=True,
        help="Path to configuration YAML file"
    )
    parser.add_argument(
        "--model_name",
        type=str,
        default="manual",
        choices=["manual", "auto"],
        help="Saved model to draw residual diagnostics for"
    )
    return parser.parse_args()


def read_config(config_path):
    """Load configuration, exiting on a missing or invalid file."""
    try:
        return load_config(config_path)
    except FileNotFoundError:
        print(f"Error: Configuration file '{config_path}' not found.")
        sys.exit(1)
    except yaml.YAMLError as e:
        print(f"Error: Invalid YAML in configuration file: {e}")
        sys.exit(1)


def load_yield_table(path):
    """Load and validate the clean quarterly yield table, exiting on failure."""
    try:
        df = load_clean_csv(path)
    except FileNotFoundError:
        print(f"Error: Clean yield table '{path}' not found. Run src/clean_data.py first.")
        sys.exit(1)
    except ValueError as e:
        print(f"Error: Invalid yield table '{path}': {e}")
        sys.exit(1)
    print(f"Loaded yield table: {len(df)} rows")
    print(f"Year range: {df['Year'].min()} - {df['Year'].max()}")
    return df


def load_optional_csv(path, what, parse_dates=None):
    if not os.path.exists(path):
        print(f"Warning: {what} '{path}' not found. Skipping.")
        return None
    return pd.read_csv(path, parse_dates=parse_dates)


def setup_plotting_style():
    """Setup matplotlib and seaborn styling."""
    sns.set_style("whitegrid")
    plt.rcParams.update({
        'font.size': 10,
        'axes.titlesize': 12,
        'axes.labelsize': 10,
        'legend.fontsize': 9,
        'figure.titlesize': 14,
    })


def _save(fig, output_dir, filename):
    output_path = os.path.join(output_dir, filename)
    fig.savefig(output_path, dpi=200, bbox_inches='tight')
    plt.close(fig)
    print(f"Saved: {output_path}")
    return output_path


def create_history_plot(data, output_dir):
    """Historical quarterly yield with a LOWESS long-term trend."""
    fig, ax = plt.subplots(figsize=(12, 6))
    ax.plot(data['Date'], data['Yield'], '-o', color='#0073C2', linewidth=1.5, markersize=4, label='Actual Yield')

    valid = data.dropna(subset=['Yield'])
    if len(valid) >= 4:
        x_num = mdates.date2num(valid['Date'])
        trend = lowess(valid['Yield'], x_num, frac=0.75, it=3)
        ax.plot(trend[:, 0], trend[:, 1], '--', color='red', linewidth=1, label='Long-term Trend')

    ax.xaxis.set_major_locator(mdates.YearLocator())
    ax.xaxis.set_major_formatter(mdates.DateFormatter('%Y'))
    ax.yaxis.set_major_formatter(comma_formatter)
    plt.setp(ax.get_xticklabels(), rotation=45, ha='right')

    start, end = data['Year'].min(), data['Year'].max()
    ax.set_title(f'Historical Quarterly Rice Yield in Pangasinan ({start}-{end})', fontsize=14, fontweight='bold')
    ax.set_xlabel('Year')
    ax.set_ylabel('Yield (Metric Tons)')
    ax.legend(loc='upper left')
    fig.text(0.99, 0.01, 'Source: Provincial Agriculture Office Data', ha='right', fontsize=8, alpha=0.7)
    fig.tight_layout()
    return _save(fig, output_dir, 'yield_history.png')


def create_seasonal_plot(data, output_dir):
    """Distribution of yield by quarter."""
    fig, ax = plt.subplots(figsize=(10, 6))
    by_quarter = data.assign(Quarter=data['Quarter'].astype(int).astype(str))
    sns.boxplot(data=by_quarter, x='Quarter', y='Yield', hue='Quarter', palette='Set2', legend=False, ax=ax)
    ax.yaxis.set_major_formatter(comma_formatter)

    medians = data.groupby('Quarter')['Yield'].median()
    peak = int(medians.idxmax()) if medians.notna().any() else None
    subtitle = f'Q{peak} has the highest median yield' if peak is not None else ''
    ax.set_title(f'Seasonal Distribution of Rice Yield by Quarter\n{subtitle}', fontsize=14, fontweight='bold')
    ax.set_xlabel('Quarter')
    ax.set_ylabel('Yield (Metric Tons)')
    fig.tight_layout()
    return _save(fig, output_dir, 'yield_seasonal_boxplot.png')


def create_raw_series_plot(data, output_dir):
    fig, ax = plt.subplots(figsize=(12, 5))
    ax.plot(data['Date'], data['Yield'], color='black', linewidth=1)
    ax.set_title('Raw Time Series: Rice Yield')
    ax.set_xlabel('Year')
    ax.set_ylabel('Yield (MT)')
    ax.yaxis.set_major_formatter(comma_formatter)
    fig.tight_layout()
    return _save(fig, output_dir, 'yield_raw_series.png')


def create_tsdisplay_plot(stationary, output_dir, max_lags=16):
    """Differenced series with its ACF and PACF, used to read off candidate orders."""
    values = stationary['Differenced'].to_numpy(dtype=float)
    # PACF needs lags below half the sample
    lags = max(1, min(max_lags, len(values) // 2 - 1))

    fig = plt.figure(figsize=(12, 8))
    ax_series = plt.subplot2grid((2, 2), (0, 0), colspan=2, fig=fig)
    ax_acf = plt.subplot2grid((2, 2), (1, 0), fig=fig)
    ax_pacf = plt.subplot2grid((2, 2), (1, 1), fig=fig)

    ax_series.plot(stationary['Date'], values, '-o', markersize=3, color='#333333')
    ax_series.axhline(0, color='grey', linewidth=0.8)
    ax_series.set_ylabel('Differenced Yield')
    ax_series.set_title('Stationary Rice Yield (After Differencing)', fontsize=14, fontweight='bold')

    plot_acf(values, lags=lags, ax=ax_acf, zero=False)
    ax_acf.set_title('ACF')
    plot_pacf(values, lags=lags, ax=ax_pacf, zero=False, method='ywm')
    ax_pacf.set_title('PACF')

    fig.tight_layout()
    return _save(fig, output_dir, 'stationary_tsdisplay.png')


def create_residual_check_plot(results, model_name, output_dir, period=4):
    """Residuals over time, residual ACF and histogram with a normal density."""
    burn = results.loglikelihood_burn
    resid = results.resid
    if not isinstance(resid, pd.Series):
        resid = pd.Series(np.asarray(resid, dtype=float))
    resid = resid.iloc[burn:].astype(float)
    lb = ljung_box_test(results, period)
    label = format_model(results.model.order, results.model.seasonal_order, results.model.trend == 'c')

    fig = plt.figure(figsize=(12, 8))
    ax_time = plt.subplot2grid((2, 2), (0, 0), colspan=2, fig=fig)
    ax_acf = plt.subplot2grid((2, 2), (1, 0), fig=fig)
    ax_hist = plt.subplot2grid((2, 2), (1, 1), fig=fig)

    ax_time.plot(resid.index, resid.to_numpy(), '-o', markersize=3)
    ax_time.axhline(0, color='red', linestyle='--', alpha=0.7)
    ax_time.set_title(f'Residuals from {label}  (Ljung-Box p = {lb.p_value:.3f}, lag {lb.lag})',
                      fontsize=12, fontweight='bold')

    plot_acf(resid.to_numpy(), lags=max(1, min(2 * period * 2, len(resid) // 2 - 1)), ax=ax_acf, zero=False)
    ax_acf.set_title('Residual ACF')

    ax_hist.hist(resid.to_numpy(), bins=15, density=True, alpha=0.7, color='steelblue', edgecolor='black')
    mu, sigma = resid.mean(), resid.std()
    if sigma > 0:
        x = np.linspace(resid.min(), resid.max(), 200)
        ax_hist.plot(x, stats.norm.pdf(x, mu, sigma), 'r-', linewidth=2)
    ax_hist.set_title('Residual Distribution')

    fig.tight_layout()
    return _save(fig, output_dir, f'residual_check_{model_name}.png')


def create_forecast_plot(data, forecast, model_name, output_dir):
    """History with point forecasts and 80%/95% prediction intervals."""
    fig, ax = plt.subplots(figsize=(12, 6))
    ax.plot(data['Date'], data['Yield'], color='black', linewidth=1.2, label='Observed')

    for level, alpha in ((95, 0.2), (80, 0.35)):
        lo, hi = f'Lo{level}', f'Hi{level}'
        if lo in forecast.columns and hi in forecast.columns:
            ax.fill_between(forecast['Date'], forecast[lo], forecast[hi], color='#0073C2', alpha=alpha,
                            label=f'{level}% interval')
    ax.plot(forecast['Date'], forecast['Forecast'], '-o', color='#0073C2', linewidth=2, markersize=4, label='Forecast')

    first, last = forecast['Year'].min(), forecast['Year'].max()
    span = f'{first}-{last}' if first != last else f'{first}'
    ax.set_title(f'Forecasted Rice Yield in Pangasinan ({span}) - {model_name}', fontsize=14, fontweight='bold')
    ax.set_xlabel('Year')
    ax.set_ylabel('Yield (Metric Tons)')
    ax.yaxis.set_major_formatter(comma_formatter)
    ax.legend(loc='upper center', bbox_to_anchor=(0.5, -0.12), ncol=4)
    fig.tight_layout()
    return _save(fig, output_dir, f'forecast_{model_name}.png')


def main():
    """Main function."""
    args = parse_arguments()
    config = read_config(args.config)

    output_dir = config['paths']['output_dir']
    models_dir = config['paths']['models_dir']
    period = int((config.get('identification', {}) or {}).get('period', 4))
    figures_dir = os.path.join(output_dir, 'figures')
    ensure_directories(output_dir, models_dir)
    model_name = args.model_name

    print("=" * 60)
    print("RICE YIELD FORECAST VISUALIZATION")
    print("=" * 60)
    print(f"Configuration file: {args.config}")
    print(f"Model name: {model_name}")
    print(f"Output directory: {output_dir}")
    print("=" * 60)

    setup_plotting_style()

    print("\nLoading data...")
    data = load_yield_table(clean_csv_path(config))
    stationary = load_optional_csv(os.path.join(output_dir, 'stationary_series.csv'), 'Differenced series', ['Date'])
    forecast = load_optional_csv(os.path.join(output_dir, 'forecast.csv'), 'Forecast file', ['Date'])

    print("\nCreating visualizations...")
    create_history_plot(data, figures_dir)
    create_seasonal_plot(data, figures_dir)
    create_raw_series_plot(data, figures_dir)
    if stationary is not None:
        create_tsdisplay_plot(stationary, figures_dir)

    results = load_latest_model(models_dir, model_name)
    if results is None:
        print(f"Warning: No saved model found for {model_name}. Residual check skipped.")
    else:
        create_residual_check_plot(results, model_name, figures_dir, period)

    if forecast is not None:
        # forecast.csv comes from the configured forecast model, not --model_name
        forecast_model = (config.get('models', {}) or {}).get('forecast_model', 'manual')
        create_forecast_plot(data, forecast, forecast_model, figures_dir)

    print("\n" + "=" * 60)
    print("VISUALIZATION COMPLETE")
    print("=" * 60)
    print(f"All figures saved to: {figures_dir}")
    print("=" * 60)


if __name__ == "__main__":
    main()
