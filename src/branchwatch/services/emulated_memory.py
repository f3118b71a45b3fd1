"""Word-addressed big-endian memory used as the debug-access collaborator."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

LOG = logging.getLogger(__name__)

WORD_SIZE = 4


class ExecutionState(Enum):
    UNINITIALIZED = 0
    PAUSED = 1
    RUNNING = 2


class EmulatedMemory:
    """Sparse instruction memory with an execution state, mirroring a paused emulator core."""

    def __init__(self) -> None:
        self._words: dict[int, int] = {}
        self.state = ExecutionState.UNINITIALIZED

    @property
    def is_initialized(self) -> bool:
        return self.state != ExecutionState.UNINITIALIZED

    def load_image(self, base: int, data: bytes) -> int:
        if base % WORD_SIZE:
            raise ValueError(f"Image base 0x{base:x} is not word aligned")
        padding = (-len(data)) % WORD_SIZE
        blob = bytes(data) + b"\x00" * padding
        for offset in range(0, len(blob), WORD_SIZE):
            self._words[(base + offset) & 0xFFFFFFFF] = int.from_bytes(blob[offset : offset + WORD_SIZE], "big")
        if self.state == ExecutionState.UNINITIALIZED:
            self.state = ExecutionState.PAUSED
        words = len(blob) // WORD_SIZE
        LOG.info("Loaded %d words at 0x%08x", words, base)
        return words

    def load_image_file(self, path: Path | str, base: int) -> int:
        image = Path(path)
        if not image.exists():
            raise FileNotFoundError(f"Memory image not found: {image}")
        return self.load_image(base, image.read_bytes())

    def read_instruction(self, address: int) -> int | None:
        if address % WORD_SIZE:
            return None
        return self._words.get(address)

    def write_instruction(self, address: int, encoding: int) -> None:
        if not self.is_initialized:
            raise RuntimeError("Core is uninitialized.")
        if address % WORD_SIZE:
            raise ValueError(f"Instruction address 0x{address:x} is not word aligned")
        self._words[address & 0xFFFFFFFF] = encoding & 0xFFFFFFFF
        LOG.debug("Patched 0x%08x with 0x%08x", address, encoding)

    def reset(self) -> None:
        self._words.clear()
        self.state = ExecutionState.UNINITIALIZED
