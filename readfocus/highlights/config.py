from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

DEFAULT_PRIORITY_TITLES = [
    "沧浪之水",
    "认知觉醒",
    "学习觉醒",
    "教父",
    "纳瓦尔宝典",
    "也许你该找个人聊聊",
    "把时间当作朋友",
]


def _split_titles(raw: Optional[str], default: List[str]) -> List[str]:
    if raw is None:
        return list(default)
    return [t.strip() for t in raw.split(",") if t.strip()]


@dataclass
class HighlightsConfig:
    weread_cookie: Optional[str] = None
    cookiecloud_host: Optional[str] = None
    cookiecloud_uuid: Optional[str] = None
    cookiecloud_password: Optional[str] = None
    priority_titles: List[str] = field(default_factory=lambda: list(DEFAULT_PRIORITY_TITLES))
    blacklist_titles: List[str] = field(default_factory=list)
    scan_limit: int = 20
    data_root: Path = Path("./data")
    database_url: Optional[str] = None
    redis_url: str = "redis://localhost:6379/0"

    @property
    def cookiecloud_configured(self) -> bool:
        return bool(self.cookiecloud_host and self.cookiecloud_uuid)

    @classmethod
    def from_env(cls) -> "HighlightsConfig":
        return cls(
            weread_cookie=os.getenv("WEREAD_COOKIE") or None,
            cookiecloud_host=os.getenv("COOKIECLOUD_HOST") or None,
            cookiecloud_uuid=os.getenv("COOKIECLOUD_UUID") or None,
            cookiecloud_password=os.getenv("COOKIECLOUD_PASSWORD") or None,
            priority_titles=_split_titles(os.getenv("READFOCUS_PRIORITY_TITLES"), DEFAULT_PRIORITY_TITLES),
            blacklist_titles=_split_titles(os.getenv("READFOCUS_BLACKLIST_TITLES"), []),
            scan_limit=int(os.getenv("READFOCUS_SCAN_LIMIT", "20")),
            data_root=Path(os.getenv("READFOCUS_DATA_ROOT", "./data")),
            database_url=os.getenv("DATABASE_URL") or None,
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        )
