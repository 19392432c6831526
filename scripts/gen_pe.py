#!/usr/bin/env python3
"""Generate PE and Storage Verilog from osarray."""

import sys
from pathlib import Path

# Add src to path if running from scripts/
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from amaranth.back import verilog  # noqa: E402

from osarray.config import AcceleratorConfig  # noqa: E402
from osarray.core.pe import PE  # noqa: E402
from osarray.memory.storage import Storage  # noqa: E402


def main():
    gen_dir = project_root / "gen"
    gen_dir.mkdir(exist_ok=True)

    config = AcceleratorConfig()

    output_path = gen_dir / "pe.v"
    with open(output_path, "w") as f:
        f.write(verilog.convert(PE(config), name="PE"))
    print(f"Generated {output_path}")

    # Operand memory: one row per load beat
    output_path = gen_dir / "storage.v"
    with open(output_path, "w") as f:
        f.write(verilog.convert(Storage(config.operand_bits, config.mem_rows), name="Storage"))
    print(f"Generated {output_path}")


if __name__ == "__main__":
    main()
