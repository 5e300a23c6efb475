#!/usr/bin/env python3
"""
Bring the dataset catalog schema up to date.

    python scripts/migrate.py                 # upgrade to head
    python scripts/migrate.py downgrade       # step back one revision
    python scripts/migrate.py downgrade base  # drop everything
"""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from alembic import command  # noqa: E402
from alembic.config import Config  # noqa: E402

from insightdeck.config.settings import get_settings  # noqa: E402


def build_config() -> Config:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", get_settings().database_url)
    return cfg


def main(argv) -> int:
    if argv and argv[0] == "downgrade":
        target = argv[1] if len(argv) > 1 else "-1"
        action, run = f"downgrade to {target}", lambda cfg: command.downgrade(cfg, target)
    else:
        action, run = "upgrade to head", lambda cfg: command.upgrade(cfg, "head")

    print(f"Catalog schema: {action}...")
    try:
        run(build_config())
    except Exception as e:
        print(f"Catalog schema {action} failed: {e}", file=sys.stderr)
        return 1
    print("Done")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
