import os
import glob
import time
import joblib
import yaml
from typing import Dict, Optional
from dotenv import load_dotenv


def load_config(config_path: str) -> Dict:
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    with open(config_path, 'r', encoding='utf-8') as f:
        cfg = yaml.safe_load(f) or {}
    load_dotenv(override=True)
    # Resolve paths with environment overrides if provided
    cfg_paths = cfg.get('paths', {}) or {}
    cfg_paths['data_dir'] = os.getenv('DATA_DIR', cfg_paths.get('data_dir', 'data'))
    cfg_paths['output_dir'] = os.getenv('OUTPUT_DIR', cfg_paths.get('output_dir', 'outputs'))
    cfg_paths['models_dir'] = os.getenv('MODELS_DIR', cfg_paths.get('models_dir', 'models'))
    cfg['paths'] = cfg_paths
    return cfg


def ensure_directories(output_dir: str, models_dir: str) -> None:
    os.makedirs(output_dir, exist_ok=True)
    os.makedirs(os.path.join(output_dir, 'figures'), exist_ok=True)
    os.makedirs(models_dir, exist_ok=True)


def clean_csv_path(cfg: Dict) -> str:
    input_cfg = cfg.get('input', {}) or {}
    return os.path.join(cfg['paths']['output_dir'], input_cfg.get('clean_csv', 'Pangasinan_Rice_Yield_Clean.csv'))


def save_model(model, models_dir: str, model_name: str) -> str:
    ts = time.strftime('%Y%m%d_%H%M%S')
    path = os.path.join(models_dir, f"{model_name}_{ts}.joblib")
    joblib.dump(model, path)
    return path


def load_latest_model(models_dir: str, model_name: str) -> Optional[object]:
    """Load the most recently saved model for ``model_name``, or None."""
    model_files = glob.glob(os.path.join(models_dir, f"{model_name}_*.joblib"))
    if not model_files:
        return None
    # Timestamped names sort chronologically
    latest = max(model_files)
    return joblib.load(latest)


def write_readme(cfg: Dict, path: str = 'README.md') -> None:
    paths = cfg['paths']
    input_cfg = cfg.get('input', {}) or {}
    models_cfg = cfg.get('models', {}) or {}
    search = models_cfg.get('search', {}) or {}
    manual = models_cfg.get('manual', {}) or {}
    fc_cfg = cfg.get('forecast', {}) or {}
    content = f"""
## Rice Yield Forecasting (Pangasinan) - Seasonal ARIMA

This repository cleans the provincial quarterly palay yield spreadsheet, checks the series for stationarity, selects a seasonal ARIMA model and forecasts the next quarters.

### Inputs and locations
- {paths['data_dir']}/{input_cfg.get('spreadsheet', '2E4EVCP0.xlsx')}
- Row layout (0-based): years in row {input_cfg.get('year_row', 0)} (forward-filled), period labels in row {input_cfg.get('period_row', 1)}, Total Palay yield in row {input_cfg.get('yield_row', 4)}
- Only columns labelled "Quarter N" are kept

### Steps
1. `python src/clean_data.py --config config.yaml` writes {clean_csv_path(cfg)} with [Date, Year, Quarter, Yield]
2. `python src/identification.py --config config.yaml` runs ADF, nsdiffs (STL seasonal strength) and ndiffs (KPSS), then differences the series
3. `python src/sarima_model.py --config config.yaml` searches SARIMA orders by AICc (p<={search.get('max_p', 5)}, q<={search.get('max_q', 5)}, P<={search.get('max_P', 2)}, Q<={search.get('max_Q', 2)}), fits the manual model {tuple(manual.get('order', [0, 1, 1]))}{tuple(manual.get('seasonal_order', [0, 1, 1]))}[4], runs Ljung-Box checks and forecasts {fc_cfg.get('horizon', 6)} quarters
4. `python viz_yield_forecast.py --config config.yaml --model_name manual` renders the figures

### Outputs
- Identification: {paths['output_dir']}/identification_summary.csv, {paths['output_dir']}/stationary_series.csv
- Models: {paths['output_dir']}/model_comparison.csv, {paths['output_dir']}/order_search_trace.csv, {paths['output_dir']}/residual_checks.csv
- Forecast: {paths['output_dir']}/forecast.csv with [Date, Year, Quarter, Forecast, Lo80, Hi80, Lo95, Hi95]
- Saved models: {paths['models_dir']}/[auto|manual]_*.joblib
- Figures: {paths['output_dir']}/figures/*.png

### Configuration
- See config.yaml. Environment overrides via .env (.env.example provided) for DATA_DIR, OUTPUT_DIR, MODELS_DIR.
- `models.forecast_model` picks which fitted model (manual or auto) produces forecast.csv.
""".strip() + "\n"
    with open(path, 'w', encoding='utf-8') as f:
        f.write(content)
