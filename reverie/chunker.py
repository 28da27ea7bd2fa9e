"""Fixed-size line chunking for files and diffs.

A body of text is split on newline characters into windows of at most
``chunk_size`` lines. Other line-break characters (form feed, a lone carriage
return, U+2028) stay inside their line. Line terminators are kept, so joining
the chunk texts in order gives back the original body exactly. Indices are dense (0..N-1) for a given body and chunk
size, which is what lets a failure ledger point back at the same chunk on a
later run.
"""

import bisect
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

from reverie.errors import SourceError


@dataclass(frozen=True)
class Chunk:
    """A contiguous slice of lines from one source unit.

    Attributes:
        index: Position in the run's chunk sequence.
        lines: The lines, terminators included.
        source: File the lines came from, or None for diffs and raw text.

    """

    index: int
    lines: tuple[str, ...]
    source: str | None = None

    @property
    def text(self) -> str:
        """The chunk body as a single string."""
        return "".join(self.lines)

    @property
    def line_count(self) -> int:
        return len(self.lines)


def split_lines(text: str) -> list[str]:
    """Split text on newlines only, keeping each line's terminator."""
    pieces = text.split("\n")
    lines = [piece + "\n" for piece in pieces[:-1]]
    if pieces[-1]:
        lines.append(pieces[-1])
    return lines


class ChunkSequence:
    """Lazy, restartable sequence of chunks over one body of text.

    Lines are split once on construction; Chunk objects are only built while
    iterating. Every call to ``iter()`` starts again from the first chunk.

    Args:
        text: Body to split.
        chunk_size: Maximum lines per chunk, at least 1.
        source: Optional source label attached to each chunk.
        start_index: Index given to the first chunk, used when several
            sequences are concatenated into one run.

    Raises:
        ValueError: If chunk_size is less than 1.

    """

    def __init__(
        self,
        text: str,
        chunk_size: int,
        source: str | None = None,
        start_index: int = 0,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")
        self._lines = split_lines(text)
        self.chunk_size = chunk_size
        self.source = source
        self.start_index = start_index

    def __len__(self) -> int:
        return -(-len(self._lines) // self.chunk_size)

    def __iter__(self) -> Iterator[Chunk]:
        for offset in range(len(self)):
            yield self._build(offset)

    def __getitem__(self, offset: int) -> Chunk:
        if offset < 0:
            offset += len(self)
        if not 0 <= offset < len(self):
            raise IndexError("chunk index out of range")
        return self._build(offset)

    def _build(self, offset: int) -> Chunk:
        start = offset * self.chunk_size
        return Chunk(
            index=self.start_index + offset,
            lines=tuple(self._lines[start:start + self.chunk_size]),
            source=self.source,
        )


def chunk_text(text: str, chunk_size: int, source: str | None = None) -> ChunkSequence:
    """Chunk a single body of text (a file's contents or a whole diff)."""
    return ChunkSequence(text, chunk_size, source=source)


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


class FileChunkSequence:
    """Lazy, densely indexed chunks over several files.

    Each file is read once up front to count its lines, then again when its
    chunks are iterated, so at most one file's text is held at a time. No
    chunk ever contains lines from two files.

    Args:
        paths: Files to chunk, in the order they should be reviewed.
        chunk_size: Maximum lines per chunk.
        read: Function returning a file's text.

    Raises:
        SourceError: If a file cannot be read.
        ValueError: If chunk_size is less than 1.

    """

    def __init__(
        self,
        paths: Iterable[Path],
        chunk_size: int,
        read: Callable[[Path], str] = _read_text,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")
        self.chunk_size = chunk_size
        self._read = read
        # (path, first chunk index, chunk count) for files with at least one line
        self._files: list[tuple[Path, int, int]] = []
        total = 0
        for path in paths:
            count = len(self._sequence(path, total))
            if count:
                self._files.append((path, total, count))
                total += count
        self._total = total

    def _sequence(self, path: Path, start_index: int) -> ChunkSequence:
        try:
            text = self._read(path)
        except OSError as e:
            raise SourceError(f"Failed to read {path}: {e}") from e
        return ChunkSequence(text, self.chunk_size, source=str(path), start_index=start_index)

    def __len__(self) -> int:
        return self._total

    def __iter__(self) -> Iterator[Chunk]:
        for path, start, _ in self._files:
            yield from self._sequence(path, start)

    def __getitem__(self, index: int) -> Chunk:
        if index < 0:
            index += self._total
        if not 0 <= index < self._total:
            raise IndexError("chunk index out of range")
        position = bisect.bisect_right([start for _, start, _ in self._files], index) - 1
        path, start, _ = self._files[position]
        return self._sequence(path, start)[index - start]


def chunk_files(
    paths: Iterable[Path],
    chunk_size: int,
    read: Callable[[Path], str] = _read_text,
) -> FileChunkSequence:
    """Chunk several files into one densely indexed sequence (0..N-1)."""
    return FileChunkSequence(paths, chunk_size, read=read)
