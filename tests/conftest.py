import os
import sys
from pathlib import Path

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for path in (str(SRC), str(ROOT)):
    if path not in sys.path:
        sys.path.insert(0, path)

from branchwatch.models.candidate import CandidateKey, CandidateRecord  # noqa: E402

# One encoding per branch variant, in BranchVariant declaration order.
BRANCH_ENCODINGS = {
    "b": 0x48000010,
    "bl": 0x48000011,
    "bc": 0x41820010,
    "bcl": 0x41820011,
    "blr": 0x4E800020,
    "blrl": 0x4E800021,
    "bclr": 0x4D820020,
    "bclrl": 0x4D820021,
    "bctr": 0x4E800420,
    "bctrl": 0x4E800421,
    "bcctr": 0x4D820420,
    "bcctrl": 0x4D820421,
}


def make_record(
    origin: int = 0x80001234,
    destination: int = 0x80005678,
    instruction: int = BRANCH_ENCODINGS["bl"],
    *,
    condition: bool = True,
    hits: int = 1,
    origin_symbol: str | None = None,
    destination_symbol: str | None = None,
) -> CandidateRecord:
    return CandidateRecord(
        key=CandidateKey(origin, destination, instruction),
        condition_taken=condition,
        hits_total=hits,
        origin_symbol=origin_symbol,
        destination_symbol=destination_symbol,
    )
