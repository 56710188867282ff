"""Tests for settings loading, source building and the sources table."""

import textwrap

import pytest

from talent_radar.config import (
    SETTINGS_PATH,
    build_selector_profile,
    build_source,
    load_config,
)
from talent_radar.database import queries
from talent_radar.errors import ConfigError, PersistenceError

SETTINGS = textwrap.dedent("""
    scraper:
      max_retries: 2
      timeout_seconds: 10
      user_agents: ["TestAgent/1.0"]
    scheduler:
      workers: ${RADAR_TEST_WORKERS:-3}
      max_run_seconds: 60
    api:
      port: "${RADAR_TEST_PORT:-9000}"
    database:
      path: "${RADAR_TEST_DB}"
    sources:
      - id: board
        base_url: "https://board.example.com/jobs"
        selectors:
          containers: ".job"
          fields:
            title: ".title"
            company:
              - ".company"
              - {selector: "img.logo", attr: "alt"}
""")


def _write(tmp_path, text=SETTINGS):
    path = tmp_path / "settings.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def _load(tmp_path, text=SETTINGS):
    return load_config(_write(tmp_path, text), env_path=tmp_path / ".env")


# ======================================================================
# load_config
# ======================================================================


def test_env_placeholders_and_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("RADAR_TEST_DB", str(tmp_path / "x.db"))
    monkeypatch.delenv("RADAR_TEST_WORKERS", raising=False)
    monkeypatch.setenv("RADAR_TEST_PORT", "9100")

    config = _load(tmp_path)

    assert config.database_path == str(tmp_path / "x.db")
    assert config.scheduler.workers == 3
    assert config.api.port == 9100
    assert config.scheduler.max_run_retries == 2
    assert config.scraper.backoff_base_seconds == 2.0
    assert config.log_level == "INFO"


def test_required_env_var_missing(tmp_path, monkeypatch):
    monkeypatch.delenv("RADAR_TEST_DB", raising=False)
    with pytest.raises(ConfigError, match="RADAR_TEST_DB"):
        _load(tmp_path)


def test_missing_section(tmp_path, monkeypatch):
    monkeypatch.setenv("RADAR_TEST_DB", "x.db")
    text = SETTINGS.replace("scheduler:\n  workers: ${RADAR_TEST_WORKERS:-3}\n  max_run_seconds: 60\n", "")
    with pytest.raises(ConfigError, match="scheduler"):
        _load(tmp_path, text)


def test_duplicate_source_ids(tmp_path, monkeypatch):
    monkeypatch.setenv("RADAR_TEST_DB", "x.db")
    board = SETTINGS.split("sources:\n", 1)[1]
    with pytest.raises(ConfigError, match="Duplicate source ids: board"):
        _load(tmp_path, SETTINGS + board)


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", env_path=tmp_path / ".env")


def test_shipped_settings_are_valid(tmp_path):
    config = load_config(SETTINGS_PATH, env_path=tmp_path / ".env")
    source = config.get_source("dev-bg")
    assert source is not None
    assert source.max_pages == 10
    assert source.page_url(2) == "https://dev.bg/company/jobs/java/page/2/"


# ======================================================================
# Sources and selector profiles
# ======================================================================


def _profile(**fields):
    return {"containers": [".job"], "fields": {"title": ".t", "company": ".c", **fields}}


def test_rule_shorthands():
    profile = build_selector_profile(_profile(url={"selector": "a", "attr": "href"}))
    assert profile.containers == (".job",)
    assert profile.fields["title"][0].selector == ".t"
    assert profile.fields["url"][0].attr == "href"


def test_unknown_field_is_rejected():
    with pytest.raises(ConfigError, match="salaryy"):
        build_selector_profile(_profile(salaryy=".s"))


def test_mandatory_cascade_required():
    with pytest.raises(ConfigError, match="company"):
        build_selector_profile({"containers": [".job"], "fields": {"title": ".t"}})


def test_invalid_pattern_is_rejected():
    with pytest.raises(ConfigError, match="pattern"):
        build_selector_profile(_profile(location={"selector": ".l", "pattern": "(unclosed"}))


def test_detect_rule_only_for_technologies():
    profile = build_selector_profile(_profile(technologies={"selector": "", "detect": True}))
    assert profile.fields["technologies"][0].detect is True
    assert "kafka" in profile.tech_patterns

    with pytest.raises(ConfigError, match="detect"):
        build_selector_profile(_profile(location={"selector": ".l", "detect": True}))


def test_invalid_tech_pattern_is_rejected():
    with pytest.raises(ConfigError, match="tech_patterns.go"):
        build_selector_profile({**_profile(), "tech_patterns": {"go": "(golang"}})


def test_weights_override_defaults():
    profile = build_selector_profile({**_profile(), "weights": {"title": 50}})
    assert profile.weights["title"] == 50
    assert profile.weights["company"] == 30


def test_unknown_pagination_strategy():
    with pytest.raises(ConfigError, match="strategy"):
        build_source({
            "id": "x", "base_url": "https://x.example/", "selectors": _profile(),
            "pagination": {"strategy": "infinite-scroll"},
        })


def test_query_pagination_replaces_existing_param():
    source = build_source({
        "id": "x", "base_url": "https://x.example/jobs?q=java&page=1", "selectors": _profile(),
        "pagination": {"strategy": "query", "param": "page", "max_pages": 3},
    })
    assert source.page_url(3) == "https://x.example/jobs?q=java&page=3"


def test_no_pagination_is_single_page(make_source):
    source = make_source(max_pages=1)
    assert source.max_pages == 1
    assert source.page_url(5) == source.base_url


@pytest.mark.asyncio
async def test_sources_table_round_trip(db, make_source):
    source = make_source(max_pages=4)
    await queries.sync_sources(db, [source, make_source(source_id="other")])

    stored = await queries.list_sources(db)
    assert [s.id for s in stored] == ["example", "other"]
    assert stored[0] == source

    # A source dropped from settings is disabled, not deleted
    await queries.sync_sources(db, [source])
    assert [s.id for s in await queries.list_sources(db)] == ["example"]
    assert len(await queries.list_sources(db, enabled_only=False)) == 2


@pytest.mark.asyncio
async def test_failed_sync_leaves_sources_enabled(db, make_source):
    await queries.sync_sources(db, [make_source()])
    conn = await db.get_connection()
    await conn.execute(
        """
        CREATE TRIGGER reject_broken BEFORE INSERT ON sources
        WHEN NEW.id = 'broken'
        BEGIN SELECT RAISE(ABORT, 'rejected'); END
        """
    )
    await conn.commit()

    with pytest.raises(PersistenceError):
        await queries.sync_sources(db, [make_source(), make_source(source_id="broken")])

    # A later commit on the shared connection must not persist the half-done sync
    await conn.commit()
    assert [s.id for s in await queries.list_sources(db)] == ["example"]
