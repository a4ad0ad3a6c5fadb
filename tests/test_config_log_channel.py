import importlib
import logging
import os
import sys
from contextlib import contextmanager

import pytest


@contextmanager
def temp_env(**values):
    original = {key: os.environ.get(key) for key in values}
    try:
        for key, value in values.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
        yield
    finally:
        for key, value in original.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value


@pytest.mark.usefixtures("caplog")
def test_log_channel_disabled_when_env_missing(caplog):
    caplog.set_level(logging.WARNING)
    module_name = "shared.config"

    with temp_env(LOG_CHANNEL_ID=None, DISCORD_TOKEN="token", GSPREAD_CREDENTIALS="{}"):
        if module_name in sys.modules:
            del sys.modules[module_name]
        cfg = importlib.import_module(module_name)
        cfg.reload_config()
        cfg.reload_config()

        warnings = [
            record
            for record in caplog.records
            if "Log channel disabled" in record.getMessage()
        ]
        assert len(warnings) == 1
        assert cfg.get_log_channel_id() is None

    importlib.reload(cfg)


def test_log_channel_parses_first_integer():
    module_name = "shared.config"
    with temp_env(LOG_CHANNEL_ID="<#123456789012345678>"):
        cfg = importlib.import_module(module_name)
        cfg.reload_config()
        assert cfg.get_log_channel_id() == 123456789012345678
    cfg.reload_config()
