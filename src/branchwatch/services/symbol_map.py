from __future__ import annotations

import logging
from bisect import bisect_right
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import lief

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class Symbol:
    name: str
    address: int
    size: int = 0

    def contains(self, address: int) -> bool:
        if self.size <= 0:
            return address == self.address
        return self.address <= address < self.address + self.size


class SymbolMap:
    """Resolve addresses to the function symbol that covers them."""

    def __init__(self, symbols: Iterable[Symbol] = ()) -> None:
        ordered = sorted({(sym.address, sym.name): sym for sym in symbols}.values(), key=lambda sym: sym.address)
        self._symbols: list[Symbol] = ordered
        self._starts: list[int] = [sym.address for sym in ordered]

    def __len__(self) -> int:
        return len(self._symbols)

    def resolve(self, address: int) -> Symbol | None:
        idx = bisect_right(self._starts, address) - 1
        if idx < 0:
            return None
        symbol = self._symbols[idx]
        return symbol if symbol.contains(address) else None

    def resolve_name(self, address: int) -> str | None:
        symbol = self.resolve(address)
        return symbol.name if symbol else None

    @classmethod
    def from_elf(cls, path: Path | str) -> "SymbolMap":
        elf_path = Path(path)
        if not elf_path.exists():
            raise FileNotFoundError(f"Symbol file not found: {elf_path}")
        binary = lief.parse(str(elf_path))
        if binary is None or not isinstance(binary, lief.ELF.Binary):
            raise ValueError(f"Unable to parse ELF symbols from {elf_path}")
        func_type = _resolve_elf_func_symbol_type()
        symbols: list[Symbol] = []
        for entry in binary.symbols:
            name = getattr(entry, "name", "") or ""
            address = int(getattr(entry, "value", 0) or 0)
            if not name or not address:
                continue
            if func_type is not None and entry.type != func_type:
                continue
            symbols.append(Symbol(name=name, address=address & 0xFFFFFFFF, size=int(entry.size or 0)))
        LOG.info("Loaded %d function symbols from %s", len(symbols), elf_path)
        return cls(symbols)


def _resolve_elf_func_symbol_type():
    elf_module = getattr(lief, "ELF", None)
    if elf_module is None:
        raise NotImplementedError("Current lief build does not expose ELF helpers")

    symbol_class = getattr(elf_module, "Symbol", None)
    type_enum = getattr(symbol_class, "TYPE", None) if symbol_class else None
    if type_enum is not None and hasattr(type_enum, "FUNC"):
        return type_enum.FUNC

    legacy_enum = getattr(elf_module, "SYMBOL_TYPES", None)
    if legacy_enum is not None and hasattr(legacy_enum, "FUNC"):
        return legacy_enum.FUNC

    return None
