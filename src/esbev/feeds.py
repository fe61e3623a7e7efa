"""Raw feed batches as handed to the normalizer."""

from __future__ import annotations

import dataclasses
import json
import logging
from pathlib import Path
from typing import Any, Iterator, List

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class RawBatch:
    """One fetched raw document plus the provenance reference it came from."""

    ref: str
    payload: Any


def iter_raw_files(root: Path | str, pattern: str = "*.json") -> Iterator[Path]:
    base = Path(root)
    if base.is_file():
        yield base
        return
    yield from sorted(path for path in base.rglob(pattern) if path.is_file())


def load_raw_batches(root: Path | str, pattern: str = "*.json") -> List[RawBatch]:
    """Load every JSON document under ``root``.

    Unreadable or invalid files are logged and skipped; they never abort the
    load.  The provenance reference is the path relative to ``root``.
    """

    base = Path(root)
    batches: List[RawBatch] = []
    for path in iter_raw_files(base, pattern):
        ref = path.name if base.is_file() else path.relative_to(base).as_posix()
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as err:
            logger.warning("Skipping unreadable raw file %s: %s", ref, err)
            continue
        batches.append(RawBatch(ref=ref, payload=payload))
    logger.info("Loaded %d raw documents from %s", len(batches), base)
    return batches


__all__ = ["RawBatch", "iter_raw_files", "load_raw_batches"]
