"""
Request-scoped response cache
1回のダッシュボード読み込みに限定した Graph API レスポンスキャッシュ。
プロセス全体で共有するグローバル辞書は使わず、生成したオブジェクトを API クライアントへ明示的に渡す。
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

# キャッシュキーに含めないクエリパラメータ
_SECRET_PARAMS = frozenset({"access_token", "appsecret_proof"})


@dataclass
class RequestCache:
    """TTL 付きのリクエストキャッシュ"""

    ttl_seconds: float
    clock: Callable[[], float] = time.monotonic
    _entries: Dict[Hashable, Tuple[float, Any]] = field(default_factory=dict, init=False, repr=False)
    hits: int = field(default=0, init=False)
    misses: int = field(default=0, init=False)

    @staticmethod
    def make_key(url: str, params: Optional[Mapping[str, Any]] = None) -> Hashable:
        items = tuple(
            sorted((str(k), str(v)) for k, v in (params or {}).items() if k not in _SECRET_PARAMS)
        )
        return (url, items)

    def get(self, key: Hashable) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        stored_at, value = entry
        if self.clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return value

    def set(self, key: Hashable, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries[key] = (self.clock(), value)

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, int]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}
