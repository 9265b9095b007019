from __future__ import annotations

import json
import threading
import time
from collections import Counter
from pathlib import Path
from typing import Any


def utc_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def relpath_posix(path: Path, base_dir: Path) -> str:
    return path.relative_to(base_dir).as_posix()


class ManifestWriter:
    """Append-only ``manifest.jsonl`` event log plus a ``manifest.json`` summary.

    Shared by every export visitor of a crawl, so appends are serialized.
    """

    def __init__(self, out_dir: Path) -> None:
        self.out_dir = Path(out_dir)
        self.jsonl_path = self.out_dir / "manifest.jsonl"
        self.json_path = self.out_dir / "manifest.json"
        self.started_at = utc_iso()
        self._lock = threading.Lock()
        self._kinds: Counter[str] = Counter()

    def append(self, event: dict[str, Any]) -> None:
        event = dict(event)
        event.setdefault("at", utc_iso())
        line = json.dumps(event, ensure_ascii=False) + "\n"
        with self._lock:
            self._kinds[str(event.get("kind", "event"))] += 1
            self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
            with self.jsonl_path.open("a", encoding="utf-8", newline="\n") as f:
                f.write(line)

    def counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._kinds)

    def write_summary(self, summary: dict[str, Any]) -> None:
        summary = {
            "started_at": self.started_at,
            "finished_at": utc_iso(),
            "events": self.counts(),
            **summary,
        }
        with self._lock:
            self.json_path.parent.mkdir(parents=True, exist_ok=True)
            self.json_path.write_text(
                json.dumps(summary, indent=2, ensure_ascii=False), encoding="utf-8"
            )
