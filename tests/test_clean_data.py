"""
Tests for reshaping the provincial spreadsheet into the quarterly yield table.
"""

import numpy as np
import pandas as pd
import pytest

from clean_data import (
    CLEAN_COLUMNS,
    extract_quarterly_yield,
    load_clean_csv,
    read_raw_spreadsheet,
    validate_yield_table,
    write_clean_csv,
)


class TestExtractQuarterlyYield:

    def test_one_row_per_quarter(self, raw_sheet):
        df = extract_quarterly_yield(raw_sheet)
        assert list(df.columns) == CLEAN_COLUMNS
        # 3 years x 4 quarters; semesters and annual totals dropped
        assert len(df) == 12
        assert df['Quarter'].tolist() == [1, 2, 3, 4] * 3

    def test_years_forward_filled(self, raw_sheet):
        df = extract_quarterly_yield(raw_sheet)
        assert df['Year'].tolist() == [2008] * 4 + [2009] * 4 + [2010] * 4

    def test_dates_are_quarter_starts(self, raw_sheet):
        df = extract_quarterly_yield(raw_sheet)
        first_year = df[df['Year'] == 2008]['Date'].dt.strftime('%Y-%m-%d').tolist()
        assert first_year == ['2008-01-01', '2008-04-01', '2008-07-01', '2008-10-01']
        assert df['Date'].is_monotonic_increasing

    def test_total_palay_row_parsed(self, raw_sheet):
        df = extract_quarterly_yield(raw_sheet)
        # "1,100.0" -> 1100.0
        assert df.loc[0, 'Yield'] == pytest.approx(1100.0)
        assert df.loc[11, 'Yield'] == pytest.approx(3400.0)

    def test_other_row_selectable(self, raw_sheet):
        df = extract_quarterly_yield(raw_sheet, yield_row=2)
        assert df.loc[0, 'Yield'] == pytest.approx(1100.0 * 0.7)

    def test_unparseable_yield_becomes_missing(self, raw_sheet):
        raw_sheet.iloc[4, 1] = 'n/a'
        df = extract_quarterly_yield(raw_sheet)
        assert np.isnan(df.loc[0, 'Yield'])
        assert df['Yield'].isna().sum() == 1

    def test_row_out_of_range(self, raw_sheet):
        with pytest.raises(ValueError, match='yield_row'):
            extract_quarterly_yield(raw_sheet, yield_row=9)

    def test_no_quarter_columns(self, raw_sheet):
        raw_sheet.iloc[1, 1:] = 'Annual'
        with pytest.raises(ValueError, match='Quarter'):
            extract_quarterly_yield(raw_sheet)

    def test_unknown_quarter_label(self, raw_sheet):
        raw_sheet.iloc[1, 1] = 'Quarter 5'
        with pytest.raises(ValueError, match='Unrecognised'):
            extract_quarterly_yield(raw_sheet)


class TestValidateYieldTable:

    def test_valid_table_passes(self, yield_table):
        assert validate_yield_table(yield_table) is yield_table

    def test_quarter_out_of_range(self, yield_table):
        yield_table.loc[0, 'Quarter'] = 5
        with pytest.raises(ValueError, match='Quarter'):
            validate_yield_table(yield_table)

    def test_negative_yield(self, yield_table):
        yield_table.loc[3, 'Yield'] = -1.0
        with pytest.raises(ValueError, match='non-negative'):
            validate_yield_table(yield_table)

    def test_missing_yield_allowed(self, yield_table):
        yield_table.loc[3, 'Yield'] = np.nan
        validate_yield_table(yield_table)

    def test_out_of_order_rows(self, yield_table):
        shuffled = yield_table.iloc[[1, 0] + list(range(2, len(yield_table)))].reset_index(drop=True)
        with pytest.raises(ValueError, match='chronological'):
            validate_yield_table(shuffled)

    def test_date_must_match_quarter(self, yield_table):
        yield_table.loc[0, 'Date'] = pd.Timestamp('2008-02-01')
        with pytest.raises(ValueError, match='first day'):
            validate_yield_table(yield_table)

    def test_missing_column(self, yield_table):
        with pytest.raises(ValueError, match='missing columns'):
            validate_yield_table(yield_table.drop(columns=['Year']))


class TestFiles:

    def test_clean_csv_layout(self, raw_sheet, tmp_path):
        df = extract_quarterly_yield(raw_sheet)
        path = write_clean_csv(df, str(tmp_path / 'clean.csv'))
        lines = (tmp_path / 'clean.csv').read_text().splitlines()
        assert lines[0] == 'Date,Year,Quarter,Yield'
        assert lines[1] == '2008-01-01,2008,1,1100.0'
        assert len(lines) == 13

        reloaded = load_clean_csv(path)
        assert pd.api.types.is_datetime64_any_dtype(reloaded['Date'])
        pd.testing.assert_series_equal(reloaded['Yield'], df['Yield'])

    def test_read_xlsx(self, raw_sheet, tmp_path):
        path = tmp_path / 'raw.xlsx'
        raw_sheet.to_excel(path, header=False, index=False)
        raw = read_raw_spreadsheet(str(path))
        df = extract_quarterly_yield(raw)
        assert len(df) == 12
        assert df.loc[4, 'Year'] == 2009
        assert df.loc[4, 'Yield'] == pytest.approx(2100.0)

    def test_missing_spreadsheet(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_raw_spreadsheet(str(tmp_path / 'absent.xlsx'))

    def test_missing_clean_csv(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_clean_csv(str(tmp_path / 'absent.csv'))
