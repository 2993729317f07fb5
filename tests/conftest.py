"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest

from checkcell.config import Settings
from checkcell.sheets.memory import InMemoryWorkbook


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create settings with small, reproducible test values."""
    return Settings(
        num_bootstraps=300,
        max_duration_ms=60_000,
        tool_significance=0.95,
        ignore_parse_errors=True,
        consider_all_outputs=True,
        rng_seed=42,
        resample_workers=1,
        flag_color="#FF0000",
        known_good_color="#008000",
        debug_mode=False,
        log_level="INFO",
        google_credentials_path=tmp_path / "credentials.json",
        google_token_path=tmp_path / "token.json",
        host="127.0.0.1",
        port=8000,
        debug=False,
        cors_allow_origins=["*"],
    )


@pytest.fixture
def spike_workbook() -> InMemoryWorkbook:
    """One input range with an outlier at position 1, summed into B1."""
    return InMemoryWorkbook.from_dict(
        {
            "sheets": {
                "Sheet1": {
                    "A1": "10",
                    "A2": "1000",
                    "A3": "10",
                    "A4": "15",
                    "B1": "=SUM(A1:A4)",
                }
            }
        }
    )


@pytest.fixture
def two_spike_workbook() -> InMemoryWorkbook:
    """Two independent input ranges, each with one outlier."""
    return InMemoryWorkbook.from_dict(
        {
            "sheets": {
                "Sheet1": {
                    "A1": "10",
                    "A2": "1000",
                    "A3": "10",
                    "A4": "15",
                    "B1": "=SUM(A1:A4)",
                    "C1": "5",
                    "C2": "7",
                    "C3": "900",
                    "C4": "6",
                    "D1": "=SUM(C1:C4)",
                }
            }
        }
    )


@pytest.fixture
def flat_workbook() -> InMemoryWorkbook:
    """An input range with identical values: nothing can be suspicious."""
    return InMemoryWorkbook.from_dict(
        {
            "sheets": {
                "Sheet1": {
                    "A1": "5",
                    "A2": "5",
                    "A3": "5",
                    "A4": "5",
                    "B1": "=SUM(A1:A4)",
                }
            }
        }
    )
