#!/usr/bin/env python3
"""Generate Core, DataflowController and Arbiter Verilog from osarray."""

import sys
from pathlib import Path

# Add src to path if running from scripts/
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from amaranth.back import verilog  # noqa: E402

from osarray.bus.arbiter import Arbiter  # noqa: E402
from osarray.config import AcceleratorConfig  # noqa: E402
from osarray.controller.dataflow import DataflowController  # noqa: E402
from osarray.top import Core  # noqa: E402


def main():
    gen_dir = project_root / "gen"
    gen_dir.mkdir(exist_ok=True)

    config = AcceleratorConfig()

    for name, dut in [
        ("DataflowController", DataflowController(config)),
        ("Arbiter", Arbiter(config)),
        ("Core", Core(config)),
    ]:
        output_path = gen_dir / f"{name.lower()}.v"
        with open(output_path, "w") as f:
            f.write(verilog.convert(dut, name=name))
        print(f"Generated {output_path}")


if __name__ == "__main__":
    main()
