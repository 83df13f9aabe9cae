import argparse
import re
import os
import sys
import pandas as pd
from utils import load_config, ensure_directories, clean_csv_path, write_readme

CLEAN_COLUMNS = ['Date', 'Year', 'Quarter', 'Yield']


def _clean_numeric_series(series: pd.Series) -> pd.Series:
    return pd.to_numeric(series.astype(str).str.replace(',', '').str.strip(), errors='coerce')


def read_raw_spreadsheet(path: str, sheet_name=0) -> pd.DataFrame:
    """Read the raw provincial sheet without headers; the row layout is handled by the caller."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Required input not found: {path}")
    if path.lower().endswith('.csv'):
        return pd.read_csv(path, header=None)
    return pd.read_excel(path, sheet_name=sheet_name, header=None)


def extract_quarterly_yield(raw: pd.DataFrame, year_row: int = 0, period_row: int = 1, yield_row: int = 4) -> pd.DataFrame:
    """Reshape the wide sheet into one row per quarter.

    The first column only holds row labels (Type, Irrigated, Rainfed, ...)
    and is dropped. Years appear once per block of periods, so they are
    forward-filled across the block. Semester and annual columns are
    discarded; only "Quarter N" columns survive.
    """
    n_rows = raw.shape[0]
    for name, idx in (('year_row', year_row), ('period_row', period_row), ('yield_row', yield_row)):
        if idx < 0 or idx >= n_rows:
            raise ValueError(f"{name}={idx} is outside the sheet (rows: {n_rows})")

    body = raw.iloc[:, 1:]
    years = _clean_numeric_series(body.iloc[year_row]).ffill()
    periods = body.iloc[period_row].astype(str).str.strip()
    yields = _clean_numeric_series(body.iloc[yield_row])

    temp = pd.DataFrame({
        'Year': years.to_numpy(),
        'Period': periods.to_numpy(),
        'Yield': yields.to_numpy(dtype=float),
    })

    final = temp[temp['Period'].str.contains('Quarter', case=False, na=False)].copy()
    if final.empty:
        raise ValueError("No 'Quarter' columns found in the period row")
    if final['Year'].isna().any():
        raise ValueError("Found quarterly columns before the first year header")

    final['Quarter'] = pd.to_numeric(
        final['Period'].str.extract(r'Quarter\s*(\d+)', flags=re.IGNORECASE, expand=False), errors='coerce'
    )
    bad = final[~final['Quarter'].isin([1, 2, 3, 4])]
    if not bad.empty:
        raise ValueError(f"Unrecognised quarter labels: {sorted(bad['Period'].unique())}")

    final['Year'] = final['Year'].astype(int)
    final['Quarter'] = final['Quarter'].astype(int)
    # Q1=Jan, Q2=Apr, Q3=Jul, Q4=Oct
    final['Date'] = pd.to_datetime(pd.DataFrame({
        'year': final['Year'],
        'month': (final['Quarter'] - 1) * 3 + 1,
        'day': 1,
    }))

    return final[CLEAN_COLUMNS].sort_values('Date').reset_index(drop=True)


def validate_yield_table(df: pd.DataFrame) -> pd.DataFrame:
    missing_cols = [c for c in CLEAN_COLUMNS if c not in df.columns]
    if missing_cols:
        raise ValueError(f"Yield table is missing columns: {missing_cols}")
    if not df['Quarter'].isin([1, 2, 3, 4]).all():
        raise ValueError("Quarter values must be in {1, 2, 3, 4}")
    if (df['Yield'].dropna() < 0).any():
        raise ValueError("Yield must be non-negative")
    dates = pd.to_datetime(df['Date'])
    if not (dates.is_monotonic_increasing and dates.is_unique):
        raise ValueError("Rows must be in strictly increasing chronological order")
    expected = pd.to_datetime(pd.DataFrame({
        'year': df['Year'].astype(int),
        'month': (df['Quarter'].astype(int) - 1) * 3 + 1,
        'day': 1,
    }))
    if not (expected.to_numpy() == dates.to_numpy()).all():
        raise ValueError("Date must be the first day of the row's Year/Quarter")
    return df


def write_clean_csv(df: pd.DataFrame, path: str) -> str:
    out = df[CLEAN_COLUMNS].copy()
    out.to_csv(path, index=False, date_format='%Y-%m-%d')
    return path


def load_clean_csv(path: str) -> pd.DataFrame:
    if not os.path.exists(path):
        raise FileNotFoundError(f"Clean yield table not found: {path} (run clean_data.py first)")
    df = pd.read_csv(path, parse_dates=['Date'])
    return validate_yield_table(df)


def main(config_path: str) -> None:
    cfg = load_config(config_path)
    ensure_directories(cfg['paths']['output_dir'], cfg['paths']['models_dir'])

    print(f"Python: {sys.version.split()[0]}")
    print(f"pandas: {pd.__version__}")

    input_cfg = cfg.get('input', {}) or {}
    raw_path = os.path.join(cfg['paths']['data_dir'], input_cfg.get('spreadsheet', '2E4EVCP0.xlsx'))
    raw = read_raw_spreadsheet(raw_path, input_cfg.get('sheet_name', 0))
    print(f"Loaded raw sheet: {raw_path} ({raw.shape[0]} rows x {raw.shape[1]} columns)")

    final_df = extract_quarterly_yield(
        raw,
        year_row=input_cfg.get('year_row', 0),
        period_row=input_cfg.get('period_row', 1),
        yield_row=input_cfg.get('yield_row', 4),
    )
    validate_yield_table(final_df)

    print(final_df.head())
    print(f"Missing Values: {int(final_df['Yield'].isna().sum())}")
    print(f"Quarters: {len(final_df)} ({final_df['Date'].min():%Y-%m} to {final_df['Date'].max():%Y-%m})")

    out_path = write_clean_csv(final_df, clean_csv_path(cfg))
    print(f"Wrote clean yield table: {out_path}")

    write_readme(cfg)


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Clean the quarterly palay yield spreadsheet')
    parser.add_argument('--config', type=str, required=True, help='Path to config.yaml')
    args = parser.parse_args()
    main(args.config)
