"""Talent Radar — Configuration Loader.

Loads and validates application configuration from a YAML file.
Resolves environment variables referenced via ${VAR_NAME} or
${VAR_NAME:-default} syntax. Uses frozen dataclasses for type-safe
configuration access; sources (with their selector cascades) are
immutable once loaded.
"""

from __future__ import annotations

import os
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import yaml
from dotenv import load_dotenv

from talent_radar.errors import ConfigError
from talent_radar.utils.logger import get_logger

logger = get_logger(__name__)

# ── Path Constants ────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
SETTINGS_PATH = CONFIG_DIR / "settings.yaml"

# ── Environment Variable Pattern ─────────────────────────
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?}")

# ── Extractable Fields ───────────────────────────────────
MANDATORY_FIELDS = ("title", "company")
SINGLE_VALUE_FIELDS = (
    "title", "company", "location", "work_model", "salary",
    "currency", "external_id", "url",
)
MULTI_VALUE_FIELDS = ("technologies", "responsibilities", "requirements", "benefits")
FIELD_NAMES = SINGLE_VALUE_FIELDS + MULTI_VALUE_FIELDS

DEFAULT_WEIGHTS: dict[str, int] = {
    "title": 30,
    "company": 30,
    "location": 10,
    "technologies": 10,
    "work_model": 5,
    "salary": 5,
    "external_id": 5,
    "url": 5,
    "responsibilities": 3,
    "requirements": 3,
    "benefits": 3,
}

PAGINATION_STRATEGIES = ("none", "path", "query")

# ── Technology Detection ─────────────────────────────────
# Matched case-insensitively against listing text by ``detect`` rules.
DEFAULT_TECH_PATTERNS: dict[str, str] = {
    "java": r"\bjava\b",
    "spring": r"\bspring\b",
    "hibernate": r"\bhibernate\b",
    "maven": r"\bmaven\b",
    "gradle": r"\bgradle\b",
    "mysql": r"\bmysql\b",
    "postgresql": r"\bpostgre(?:sql|s)\b",
    "docker": r"\bdocker\b",
    "kubernetes": r"\b(?:kubernetes|k8s)\b",
    "aws": r"\baws\b",
    "git": r"\bgit\b",
    "jenkins": r"\bjenkins\b",
    "junit": r"\bjunit\b",
    "microservices": r"\bmicroservices?\b",
    "react": r"\breact\b",
    "angular": r"\bangular\b",
    "vue": r"\bvue(?:\.?js)?\b",
    "node": r"\bnode(?:\.?js)?\b",
    "typescript": r"\b(?:typescript|ts)\b",
    "javascript": r"\b(?:javascript|js)\b",
    "python": r"\bpython\b",
    "django": r"\bdjango\b",
    "flask": r"\bflask\b",
    "mongodb": r"\bmongo(?:db)?\b",
    "redis": r"\bredis\b",
    "elasticsearch": r"\belastic(?:search)?\b",
    "kafka": r"\bkafka\b",
    "rabbitmq": r"\brabbit(?:mq)?\b",
}
DETECT_FIELDS = ("technologies",)


# ═══════════════════════════════════════════════════════════
# Configuration Dataclasses
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ScraperConfig:
    """Configuration for the page fetcher."""

    max_retries: int
    timeout_seconds: float
    backoff_base_seconds: float
    backoff_max_seconds: float
    backoff_jitter: float
    throttle_multiplier: float
    user_agents: tuple[str, ...]


@dataclass(frozen=True)
class SchedulerConfig:
    """Configuration for the run queue and worker pool."""

    workers: int
    max_run_seconds: float
    max_run_retries: int
    retry_base_seconds: float
    retry_max_seconds: float
    queue_size: int
    stats_window: int


@dataclass(frozen=True)
class ApiConfig:
    """Configuration for the trigger/stats HTTP adapter."""

    enabled: bool
    host: str
    port: int


@dataclass(frozen=True)
class SelectorRule:
    """One step of a selector cascade.

    Attributes:
        selector: CSS selector relative to the listing node; empty means
            the listing node itself.
        attr: Attribute to read; empty means the node's text.
        pattern: Optional regex; the first group (or whole match) wins.
        detect: Scan the matched text for known technology names instead
            of reading values. Detected names are merged into whatever
            the rest of the cascade resolved.
    """

    selector: str = ""
    attr: str = ""
    pattern: str = ""
    detect: bool = False


@dataclass(frozen=True)
class SelectorProfile:
    """Per-source extraction configuration.

    Attributes:
        containers: Listing container selectors, primary first.
        fields: Ordered cascade of rules per field name.
        weights: Confidence weight per field.
        fallback_penalty: Confidence points lost when a fallback
            container selector had to be used.
        tech_patterns: Technology name → regex used by ``detect`` rules.
    """

    containers: tuple[str, ...]
    fields: dict[str, tuple[SelectorRule, ...]]
    weights: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    fallback_penalty: int = 10
    tech_patterns: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TECH_PATTERNS))


@dataclass(frozen=True)
class PaginationConfig:
    """How listing page URLs are derived from the base URL."""

    strategy: str = "none"
    template: str = "{base_url}page/{page}/"
    param: str = "page"
    max_pages: int = 1


@dataclass(frozen=True)
class RateLimitConfig:
    """Token bucket for one source."""

    max_requests: int = 1
    period_seconds: float = 2.0


@dataclass(frozen=True)
class Source:
    """A configured job board (or one category of it)."""

    id: str
    name: str
    base_url: str
    selectors: SelectorProfile
    pagination: PaginationConfig = field(default_factory=PaginationConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    stable_external_ids: bool = False
    schedule_minutes: int = 0
    enabled: bool = True
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def max_pages(self) -> int:
        if self.pagination.strategy == "none":
            return 1
        return max(1, self.pagination.max_pages)

    def page_url(self, page: int) -> str:
        """Return the listing URL for a 1-indexed page number."""
        strategy = self.pagination.strategy
        if strategy == "path":
            if page == 1:
                return self.base_url
            return self.pagination.template.format(base_url=self.base_url, page=page)
        if strategy == "query":
            parts = urlsplit(self.base_url)
            query = [(k, v) for k, v in parse_qsl(parts.query) if k != self.pagination.param]
            query.append((self.pagination.param, str(page)))
            return urlunsplit(parts._replace(query=urlencode(query)))
        return self.base_url

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the settings.yaml shape (for the sources table)."""
        return asdict(self)


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration container."""

    scraper: ScraperConfig
    scheduler: SchedulerConfig
    api: ApiConfig
    sources: tuple[Source, ...]
    database_path: str
    log_level: str

    def get_source(self, source_id: str) -> Source | None:
        for source in self.sources:
            if source.id == source_id:
                return source
        return None


# ═══════════════════════════════════════════════════════════
# YAML Loading & Environment Variable Resolution
# ═══════════════════════════════════════════════════════════


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ${VAR_NAME} references in YAML values.

    Args:
        value: A string, dict, list, or primitive from parsed YAML.

    Returns:
        The same structure with all placeholders replaced.

    Raises:
        ConfigError: If a referenced variable is unset and has no default.
    """
    if isinstance(value, str):
        def _substitute(match: re.Match) -> str:
            var_name, default = match.group(1), match.group(2)
            env_value = os.environ.get(var_name)
            if env_value is not None:
                return env_value
            if default is not None:
                return default
            raise ConfigError(
                f"Environment variable '${{{var_name}}}' is required but not set. "
                f"Add it to your .env file or export it in your shell."
            )
        return ENV_VAR_PATTERN.sub(_substitute, value)
    elif isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file with UTF-8 encoding.

    Raises:
        FileNotFoundError: If the YAML file does not exist.
        ConfigError: If the file is empty or not a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not data:
        raise ConfigError(f"Configuration file is empty: {path}")
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration root must be a mapping: {path}")

    logger.debug("Loaded configuration from %s", path)
    return data


# ═══════════════════════════════════════════════════════════
# Dataclass Builders
# ═══════════════════════════════════════════════════════════


def _build_scraper_config(data: dict[str, Any]) -> ScraperConfig:
    """Build a ScraperConfig from the 'scraper' section."""
    _validate_keys(data, ["max_retries", "timeout_seconds", "user_agents"], "scraper")

    user_agents = data["user_agents"]
    if not user_agents:
        raise ConfigError("scraper.user_agents must list at least one User-Agent")

    return ScraperConfig(
        max_retries=int(data["max_retries"]),
        timeout_seconds=float(data["timeout_seconds"]),
        backoff_base_seconds=float(data.get("backoff_base_seconds", 2.0)),
        backoff_max_seconds=float(data.get("backoff_max_seconds", 60.0)),
        backoff_jitter=float(data.get("backoff_jitter", 0.25)),
        throttle_multiplier=float(data.get("throttle_multiplier", 3.0)),
        user_agents=tuple(user_agents),
    )


def _build_scheduler_config(data: dict[str, Any]) -> SchedulerConfig:
    """Build a SchedulerConfig from the 'scheduler' section."""
    _validate_keys(data, ["workers", "max_run_seconds"], "scheduler")

    workers = int(data["workers"])
    if workers < 1:
        raise ConfigError(f"scheduler.workers must be >= 1, got {workers}")

    return SchedulerConfig(
        workers=workers,
        max_run_seconds=float(data["max_run_seconds"]),
        max_run_retries=int(data.get("max_run_retries", 2)),
        retry_base_seconds=float(data.get("retry_base_seconds", 30.0)),
        retry_max_seconds=float(data.get("retry_max_seconds", 600.0)),
        queue_size=int(data.get("queue_size", 100)),
        stats_window=int(data.get("stats_window", 20)),
    )


def _build_api_config(data: dict[str, Any]) -> ApiConfig:
    """Build an ApiConfig from the optional 'api' section."""
    return ApiConfig(
        enabled=bool(data.get("enabled", True)),
        host=str(data.get("host", "127.0.0.1")),
        port=int(data.get("port", 8080)),
    )


def _build_rule(raw: Any, where: str) -> SelectorRule:
    """A rule may be written as a bare selector string or a mapping."""
    if isinstance(raw, str):
        return SelectorRule(selector=raw)
    if not isinstance(raw, dict):
        raise ConfigError(f"Invalid selector rule in '{where}': {raw!r}")
    pattern = raw.get("pattern", "") or ""
    if pattern:
        try:
            re.compile(pattern)
        except re.error as e:
            raise ConfigError(f"Invalid pattern in '{where}': {pattern!r} ({e})") from e
    detect = bool(raw.get("detect", False))
    if detect and not where.endswith(DETECT_FIELDS):
        raise ConfigError(
            f"'detect' is only supported for {', '.join(DETECT_FIELDS)} (in '{where}')"
        )
    return SelectorRule(
        selector=raw.get("selector", "") or "",
        attr=raw.get("attr", "") or "",
        pattern=pattern,
        detect=detect,
    )


def _build_tech_patterns(raw: Any, where: str) -> dict[str, str]:
    """Defaults, overridden per name; a null pattern removes the name."""
    patterns = dict(DEFAULT_TECH_PATTERNS)
    if raw is None:
        return patterns
    if not isinstance(raw, dict):
        raise ConfigError(f"'{where}' must map technology names to patterns")
    for name, pattern in raw.items():
        name = str(name).strip().lower()
        if pattern is None:
            patterns.pop(name, None)
            continue
        try:
            re.compile(str(pattern), re.IGNORECASE)
        except re.error as e:
            raise ConfigError(f"Invalid pattern for '{where}.{name}': {pattern!r} ({e})") from e
        patterns[name] = str(pattern)
    return patterns


def build_selector_profile(data: dict[str, Any], where: str = "selectors") -> SelectorProfile:
    """Build a SelectorProfile from a 'selectors' mapping.

    Raises:
        ConfigError: On unknown field names, missing mandatory cascades,
            or an empty container list.
    """
    _validate_keys(data, ["containers", "fields"], where)

    containers = data["containers"]
    if isinstance(containers, str):
        containers = [containers]
    if not containers:
        raise ConfigError(f"'{where}.containers' must list at least one selector")

    raw_fields = data["fields"] or {}
    unknown = [name for name in raw_fields if name not in FIELD_NAMES]
    if unknown:
        raise ConfigError(f"Unknown fields in '{where}.fields': {', '.join(unknown)}")
    missing = [name for name in MANDATORY_FIELDS if not raw_fields.get(name)]
    if missing:
        raise ConfigError(f"'{where}.fields' needs cascades for: {', '.join(missing)}")

    fields: dict[str, tuple[SelectorRule, ...]] = {}
    for name, rules in raw_fields.items():
        if isinstance(rules, (str, dict)):
            rules = [rules]
        fields[name] = tuple(_build_rule(rule, f"{where}.fields.{name}") for rule in rules or [])

    weights = dict(DEFAULT_WEIGHTS)
    weights.update({k: int(v) for k, v in (data.get("weights") or {}).items()})

    return SelectorProfile(
        containers=tuple(containers),
        fields=fields,
        weights=weights,
        fallback_penalty=int(data.get("fallback_penalty", 10)),
        tech_patterns=_build_tech_patterns(data.get("tech_patterns"), f"{where}.tech_patterns"),
    )


def build_source(data: dict[str, Any]) -> Source:
    """Build a Source from one entry of the 'sources' list."""
    _validate_keys(data, ["id", "base_url", "selectors"], "sources[]")
    source_id = str(data["id"])
    where = f"sources.{source_id}"

    pagination_data = data.get("pagination") or {}
    pagination = PaginationConfig(
        strategy=pagination_data.get("strategy", "none"),
        template=pagination_data.get("template", PaginationConfig.template),
        param=pagination_data.get("param", PaginationConfig.param),
        max_pages=int(pagination_data.get("max_pages", 1)),
    )
    if pagination.strategy not in PAGINATION_STRATEGIES:
        raise ConfigError(
            f"'{where}.pagination.strategy' must be one of "
            f"{', '.join(PAGINATION_STRATEGIES)}, got {pagination.strategy!r}"
        )

    rate_data = data.get("rate_limit") or {}
    rate_limit = RateLimitConfig(
        max_requests=int(rate_data.get("max_requests", 1)),
        period_seconds=float(rate_data.get("period_seconds", 2.0)),
    )

    return Source(
        id=source_id,
        name=str(data.get("name", source_id)),
        base_url=data["base_url"],
        selectors=build_selector_profile(data["selectors"], f"{where}.selectors"),
        pagination=pagination,
        rate_limit=rate_limit,
        stable_external_ids=bool(data.get("stable_external_ids", False)),
        schedule_minutes=int(data.get("schedule_minutes", 0)),
        enabled=bool(data.get("enabled", True)),
        headers=dict(data.get("headers") or {}),
    )


def _validate_keys(data: dict[str, Any], required: list[str], section: str) -> None:
    """Validate that all required keys exist in a config section.

    Raises:
        ConfigError: If any required key is missing.
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration section '{section}' must be a mapping")
    missing = [key for key in required if key not in data]
    if missing:
        raise ConfigError(
            f"Missing required configuration keys in '{section}': {', '.join(missing)}"
        )


# ═══════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════


def load_config(
    settings_path: Path | None = None,
    env_path: Path | None = None,
) -> AppConfig:
    """Load the complete application configuration.

    Args:
        settings_path: Override path to settings.yaml. Defaults to config/settings.yaml.
        env_path: Override path to .env file. Defaults to project root .env.

    Returns:
        A fully validated AppConfig instance.

    Raises:
        FileNotFoundError: If the settings file is missing.
        ConfigError: If required fields are missing or env vars are unset.
    """
    env_file = env_path or (PROJECT_ROOT / ".env")
    load_dotenv(env_file)
    logger.debug("Loaded environment from %s", env_file)

    settings = _resolve_env_vars(_load_yaml(settings_path or SETTINGS_PATH))

    _validate_keys(settings, ["scraper", "scheduler", "database", "sources"], "settings")

    sources = tuple(build_source(entry) for entry in settings["sources"] or [])
    ids = [s.id for s in sources]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate source ids: {', '.join(duplicates)}")

    config = AppConfig(
        scraper=_build_scraper_config(settings["scraper"]),
        scheduler=_build_scheduler_config(settings["scheduler"]),
        api=_build_api_config(settings.get("api") or {}),
        sources=sources,
        database_path=settings["database"]["path"],
        log_level=(settings.get("logging") or {}).get("level", "INFO"),
    )

    logger.info("Configuration loaded successfully (%d sources)", len(sources))
    logger.debug("Database path: %s", config.database_path)
    logger.debug("Workers: %d", config.scheduler.workers)

    return config
