"""
Tests for datamarket/config.py
"""

from pathlib import Path

import pytest

from datamarket.config import (
    DEFAULT_API_PORT,
    DEFAULT_EVENT_WINDOW,
    FEE_QUANTUM,
    EngineConfig,
)

ENV_VARS = (
    "DATAMARKET_RPC_URL",
    "DATAMARKET_DATASET_REGISTRY",
    "DATAMARKET_BOUNTY_REGISTRY",
    "DATAMARKET_STORAGE_DIR",
    "DATAMARKET_EVENT_WINDOW",
    "DATAMARKET_RECEIPT_TIMEOUT",
    "DATAMARKET_API_HOST",
    "DATAMARKET_API_PORT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestEngineConfig:
    """Test EngineConfig defaults and environment loading."""

    def test_defaults(self):
        config = EngineConfig.from_env()
        assert config.event_window == DEFAULT_EVENT_WINDOW
        assert config.api_port == DEFAULT_API_PORT
        assert config.has_ledger is False

    def test_fee_quantum(self):
        assert str(FEE_QUANTUM) == "0.0001"

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATAMARKET_RPC_URL", "http://localhost:8545")
        monkeypatch.setenv("DATAMARKET_DATASET_REGISTRY", "0x" + "d1" * 20)
        monkeypatch.setenv("DATAMARKET_BOUNTY_REGISTRY", "0x" + "e2" * 20)
        monkeypatch.setenv("DATAMARKET_STORAGE_DIR", str(tmp_path))
        monkeypatch.setenv("DATAMARKET_EVENT_WINDOW", "500")
        monkeypatch.setenv("DATAMARKET_RECEIPT_TIMEOUT", "30.5")

        config = EngineConfig.from_env()
        assert config.has_ledger is True
        assert config.storage_dir == tmp_path
        assert config.event_window == 500
        assert config.receipt_timeout == 30.5

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("DATAMARKET_API_PORT", "9000")
        config = EngineConfig.from_env({"api_port": 9100, "rpc_url": None})
        assert config.api_port == 9100
        assert config.rpc_url == ""

    def test_blank_env_uses_default(self, monkeypatch):
        monkeypatch.setenv("DATAMARKET_EVENT_WINDOW", "  ")
        assert EngineConfig.from_env().event_window == DEFAULT_EVENT_WINDOW

    @pytest.mark.parametrize("name,value", [
        ("DATAMARKET_EVENT_WINDOW", "lots"),
        ("DATAMARKET_RECEIPT_TIMEOUT", "soon"),
        ("DATAMARKET_EVENT_WINDOW", "0"),
    ])
    def test_invalid_env(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ValueError):
            EngineConfig.from_env()

    def test_partial_ledger_config(self):
        config = EngineConfig(rpc_url="http://localhost:8545", dataset_registry="0x1")
        assert config.has_ledger is False

    def test_to_dict(self):
        data = EngineConfig(storage_dir="/tmp/dm").to_dict()
        assert data["storage_dir"] == str(Path("/tmp/dm"))
        assert data["event_window"] == DEFAULT_EVENT_WINDOW
