#!/usr/bin/env python3
"""Talent Radar — Launcher.

Validates settings.yaml, prints the sources that will be scraped and
starts the service.

Usage:
    python scripts/run.py           # validate, then start
    python scripts/run.py --check   # validate only
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


def describe_source(source) -> str:
    """One line per source: pages, schedule and configured cascades."""
    schedule = f"every {source.schedule_minutes}m" if source.schedule_minutes > 0 else "manual"
    cascades = ", ".join(
        f"{name}×{len(rules)}" + ("+detect" if any(r.detect for r in rules) else "")
        for name, rules in source.selectors.fields.items()
    )
    return (
        f"  {source.id:<16} {source.max_pages:>2} pages  {schedule:<12} "
        f"{len(source.selectors.containers)} containers  [{cascades}]"
    )


def check_setup():
    """Load settings and make sure the database and log folders exist.

    Returns:
        The AppConfig, or None when the settings cannot be used.
    """
    os.chdir(str(PROJECT_ROOT))

    from talent_radar.config import SETTINGS_PATH, load_config
    from talent_radar.errors import ConfigError

    try:
        config = load_config()
    except (ConfigError, FileNotFoundError) as e:
        print(f"Cannot use {SETTINGS_PATH.relative_to(PROJECT_ROOT)}: {e}")
        return None

    enabled = [s for s in config.sources if s.enabled]
    if not enabled:
        print("No enabled sources; add one under 'sources:' in settings.yaml")
        return None

    print(f"{len(enabled)} enabled source(s):")
    for source in enabled:
        print(describe_source(source))

    db_dir = Path(config.database_path).parent
    for folder in (db_dir, PROJECT_ROOT / "logs"):
        folder.mkdir(parents=True, exist_ok=True)
    print(f"Database: {config.database_path}")
    if config.api.enabled:
        print(f"API:      http://{config.api.host}:{config.api.port}")
    return config


def main() -> None:
    if check_setup() is None:
        sys.exit(1)
    if "--check" in sys.argv[1:]:
        return

    from talent_radar.main import main as app_main
    app_main()


if __name__ == "__main__":
    main()
