from __future__ import annotations

import uuid
from functools import lru_cache

from readfocus.highlights import HighlightsConfig, ReadingService, build_service


@lru_cache(maxsize=1)
def get_config() -> HighlightsConfig:
    return HighlightsConfig.from_env()


@lru_cache(maxsize=1)
def get_service() -> ReadingService:
    return build_service(get_config())


def build_job_id() -> str:
    return f"sync-{uuid.uuid4().hex[:12]}"
