"""Failed chunk ledger.

The ledger is a JSON array of ``{"index", "error", "stage", "language"}``
records, written at the end of a run in which at least one chunk failed.
A resume run reads it back, keeps only the recorded chunks, and rewrites it
with the records its retries did not resolve, including the ones it never
reached because it was interrupted.

Indices are only meaningful against the same inputs and chunk size that
produced them. If the files or diff change between runs, an index can point
at different content; nothing here detects that.
"""

import json
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass
from pathlib import Path

from reverie.chunker import Chunk
from reverie.errors import LedgerError

STAGE_REVIEW = "review"
STAGE_TEST_GENERATION = "test_generation"


@dataclass(frozen=True)
class FailedChunkRecord:
    """A chunk whose review or test generation exhausted its retries."""

    index: int
    error: str
    stage: str = STAGE_REVIEW
    language: str | None = None


def write_ledger(path: Path, records: Iterable[FailedChunkRecord]) -> None:
    """Serialize records to path as a JSON array.

    Raises:
        LedgerError: If the file cannot be written.

    """
    payload = [asdict(record) for record in records]
    try:
        path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    except OSError as e:
        raise LedgerError(f"Could not write failed chunks file {path}: {e}") from e


def read_ledger(path: Path) -> list[FailedChunkRecord]:
    """Read records written by write_ledger().

    Records without a ``stage`` field are treated as review failures.

    Raises:
        LedgerError: If the file is missing, not JSON, or malformed.

    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise LedgerError(f"Failed chunks file not found: {path}") from None
    except (OSError, json.JSONDecodeError) as e:
        raise LedgerError(f"Failed to decode failed chunks file {path}: {e}") from e

    if not isinstance(data, list):
        raise LedgerError(f"{path} must contain a JSON array")

    records: list[FailedChunkRecord] = []
    for entry in data:
        if not isinstance(entry, dict) or not isinstance(entry.get("index"), int):
            raise LedgerError(f"Malformed record in {path}: {entry!r}")
        records.append(FailedChunkRecord(
            index=entry["index"],
            error=str(entry.get("error", "")),
            stage=str(entry.get("stage", STAGE_REVIEW)),
            language=entry.get("language"),
        ))
    return records


def select_failed(chunks: Sequence[Chunk], records: Iterable[FailedChunkRecord]) -> list[Chunk]:
    """Keep only the chunks named in records, in index order.

    Out-of-range indices and duplicates are dropped. Selected chunks keep
    their original indices so a second failure maps back to the same chunk.
    """
    wanted = sorted({record.index for record in records if 0 <= record.index < len(chunks)})
    return [chunks[index] for index in wanted]


def drop_attempted(
    records: Iterable[FailedChunkRecord],
    language: str,
    attempted: Iterable[int],
) -> list[FailedChunkRecord]:
    """Remove records that a pass over ``language`` has already retried.

    A record without a language matches any pass. Whatever is left still
    needs a retry and must survive in the ledger.
    """
    done = set(attempted)
    return [
        record for record in records
        if not (record.index in done and record.language in (None, language))
    ]
