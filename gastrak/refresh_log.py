from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

PAGE_SIZE = 15


@dataclass
class RefreshEvent:
    time: str      # ISO-8601 UTC
    status: str    # "ok" | "error"
    current: int   # observations loaded; 0 on error
    history: int
    error: str     # "" on success


def record(path: str, event: RefreshEvent) -> None:
    """Append one refresh event to the JSONL file. Creates the file/dirs if needed."""
    if not path:
        return
    p = Path(path)
    line = json.dumps(asdict(event)) + "\n"
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        with p.open("a", encoding="utf-8") as f:
            f.write(line)
    except Exception:
        logger.exception("Failed to write refresh log to %s", path)


def load_page(
    path: str,
    page: int = 1,
    status: str = "",
) -> tuple[list[RefreshEvent], int]:
    """Return (events, total_filtered) for the given page, newest first.

    Optionally filter by status ("ok"|"error"). Page is 1-based.
    """
    if not path:
        return [], 0
    p = Path(path)
    if not p.exists():
        return [], 0
    try:
        lines = p.read_text(encoding="utf-8").splitlines()
    except Exception:
        logger.exception("Failed to read refresh log from %s", path)
        return [], 0

    valid = [l for l in lines if l.strip()]
    valid.reverse()  # newest first

    all_events: list[RefreshEvent] = []
    for line in valid:
        try:
            d = json.loads(line)
        except ValueError:
            logger.warning("Skipping unreadable refresh log line in %s", path)
            continue
        if status and d.get("status") != status:
            continue
        all_events.append(RefreshEvent(
            time=d.get("time", ""),
            status=d.get("status", ""),
            current=int(d.get("current", 0)),
            history=int(d.get("history", 0)),
            error=d.get("error", ""),
        ))

    total = len(all_events)
    start = (page - 1) * PAGE_SIZE
    return all_events[start: start + PAGE_SIZE], total
