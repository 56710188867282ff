"""Tests for the scripts/run.py launcher checks."""

import importlib.util
from dataclasses import replace
from pathlib import Path

import pytest

from talent_radar.config import ApiConfig, AppConfig
from talent_radar.errors import ConfigError

RUN_SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "run.py"


@pytest.fixture()
def run_script():
    found = importlib.util.spec_from_file_location("talent_radar_run_script", RUN_SCRIPT)
    module = importlib.util.module_from_spec(found)
    found.loader.exec_module(module)
    return module


@pytest.fixture()
def app_config(tmp_path, scraper_config, scheduler_config, make_source):
    return AppConfig(
        scraper=scraper_config,
        scheduler=scheduler_config,
        api=ApiConfig(enabled=True, host="127.0.0.1", port=8080),
        sources=(make_source(max_pages=3, schedule_minutes=60),),
        database_path=str(tmp_path / "db" / "radar.db"),
        log_level="INFO",
    )


def test_source_line_lists_cascades(run_script, make_source):
    source = make_source(
        max_pages=3,
        schedule_minutes=60,
        fields={
            "title": [".job-title", "h2"],
            "company": [".company-name"],
            "technologies": [{"selector": "img", "attr": "title"}, {"selector": "", "detect": True}],
        },
    )
    line = run_script.describe_source(source)

    assert line.split()[0] == "example"
    assert "3 pages" in line
    assert "every 60m" in line
    assert "[title×2, company×1, technologies×2+detect]" in line


def test_check_setup_creates_database_folder(run_script, app_config, monkeypatch, capsys, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("talent_radar.config.load_config", lambda: app_config)

    assert run_script.check_setup() is app_config

    assert (tmp_path / "db").is_dir()
    out = capsys.readouterr().out
    assert "1 enabled source(s)" in out
    assert "http://127.0.0.1:8080" in out


def test_check_setup_rejects_unusable_settings(run_script, app_config, monkeypatch, capsys, tmp_path):
    monkeypatch.chdir(tmp_path)

    def broken():
        raise ConfigError("scheduler.workers must be >= 1, got 0")

    monkeypatch.setattr("talent_radar.config.load_config", broken)
    assert run_script.check_setup() is None
    assert "workers must be >= 1" in capsys.readouterr().out

    disabled = replace(app_config, sources=(replace(app_config.sources[0], enabled=False),))
    monkeypatch.setattr("talent_radar.config.load_config", lambda: disabled)
    assert run_script.check_setup() is None
    assert "No enabled sources" in capsys.readouterr().out
