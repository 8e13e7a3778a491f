#!/usr/bin/env python3
"""Create the Weaviate chunk class if it is missing."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
PACKAGE_PATHS = [ROOT / "packages" / "docqa_shared", ROOT / "services" / "api"]
for path in PACKAGE_PATHS:
    if str(path) not in sys.path:
        sys.path.append(str(path))

from docqa_shared import configure_logging, create_weaviate_client, get_settings  # noqa: E402
from app.infra.weaviate_schema import ensure_weaviate_schema  # noqa: E402


def main() -> None:
    configure_logging("seed-weaviate")
    settings = get_settings()
    ensure_weaviate_schema(create_weaviate_client(settings), settings)


if __name__ == "__main__":
    main()
