"""Offset-indexed containers.

An indexed container is a u32 magic, a u32 entry count and that many u32
offsets. Each offset is relative to the position where the container's own
header starts, so a container nested inside another re-anchors its offsets
at its own start. MML files ("MML ") group MOM sub-files this way.
"""
from dataclasses import dataclass
from typing import Callable, Generic, List, TypeVar

from lsdlib.binary_io import BinaryReader
from lsdlib.debug_console import DebugConsole
from lsdlib.errors import BadFormatError

T = TypeVar("T")

EntryDecoder = Callable[[BinaryReader], T]


@dataclass(frozen=True)
class ContainerEntry(Generic[T]):
    offset: int
    value: T


@dataclass(frozen=True)
class Container(Generic[T]):
    magic: int
    start: int  # absolute position of the container header
    entries: List[ContainerEntry[T]]

    @property
    def offsets(self) -> List[int]:
        return [entry.offset for entry in self.entries]

    @property
    def values(self) -> List[T]:
        return [entry.value for entry in self.entries]

    def __len__(self):
        return len(self.entries)

    def __getitem__(self, index) -> T:
        return self.entries[index].value


class IndexedContainerParser:
    """Reads magic, count and offset table, then decodes each entry.

    The reader is left just past the last decoded entry.
    """

    MAGIC = None
    NAME = "container"

    def __init__(self, reader, entry_decoder: EntryDecoder, magic=None):
        self.reader = reader
        self.entry_decoder = entry_decoder
        self.magic = self.MAGIC if magic is None else magic
        if self.magic is None:
            raise ValueError(f"No magic number given for {self.NAME}")

    def parse(self) -> Container:
        start = self.reader.tell()
        magic = self.reader.read_u32()
        if magic != self.magic:
            raise BadFormatError(
                f"{self.NAME} did not have correct magic number: "
                f"expected {self.magic:#010x}, found {magic:#010x}",
                offset=start,
            )

        count = self.reader.read_u32()
        offsets = [self.reader.read_u32() for _ in range(count)]
        DebugConsole.log(f"{self.NAME} at {start:#x}: {count} entries")

        entries = []
        for offset in offsets:
            self.reader.seek_from(start, offset)
            entries.append(ContainerEntry(offset=offset, value=self.entry_decoder(self.reader)))
        return Container(magic=magic, start=start, entries=entries)


class MMLParser(IndexedContainerParser):
    MAGIC = 0x204C4D4D  # "MML "
    NAME = "MML"


def decode_container(reader, magic: int, entry_decoder: EntryDecoder) -> Container:
    return IndexedContainerParser(reader, entry_decoder, magic=magic).parse()


def read_mml(reader, entry_decoder: EntryDecoder) -> Container:
    return MMLParser(reader, entry_decoder).parse()
