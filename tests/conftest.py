"""Pytest configuration for ragctx tests."""

import os

import pytest


@pytest.fixture(autouse=True)
def clean_ragctx_env(monkeypatch, tmp_path):
    """Clear ragctx environment variables and prevent .env loading for test isolation."""
    ragctx_vars = [k for k in os.environ if k.startswith("RAGCTX_")]
    for var in ragctx_vars:
        monkeypatch.delenv(var, raising=False)

    # Change to temp directory to avoid loading local .env file
    monkeypatch.chdir(tmp_path)

    yield
