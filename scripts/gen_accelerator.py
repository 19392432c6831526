#!/usr/bin/env python3
"""Generate Accelerator Verilog from osarray."""

import sys
from pathlib import Path

# Add src to path if running from scripts/
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from amaranth.back import verilog  # noqa: E402

from osarray.config import DEFAULT_CONFIG, SMALL_CONFIG  # noqa: E402
from osarray.top import Accelerator  # noqa: E402


def main():
    gen_dir = project_root / "gen"
    gen_dir.mkdir(exist_ok=True)

    # Two cores of 2x2 PEs, used by the cocotb testbenches
    output_path = gen_dir / "accelerator.v"
    with open(output_path, "w") as f:
        f.write(verilog.convert(Accelerator(SMALL_CONFIG), name="Accelerator"))
    print(f"Generated {output_path}")

    # Four cores of 4x4 PEs
    output_path_4x4 = gen_dir / "accelerator_4x4.v"
    with open(output_path_4x4, "w") as f:
        f.write(verilog.convert(Accelerator(DEFAULT_CONFIG), name="Accelerator_4x4"))
    print(f"Generated {output_path_4x4}")


if __name__ == "__main__":
    main()
