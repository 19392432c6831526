"""
Unit tests for AcceleratorConfig.
"""

import pytest

from osarray.config import (
    DEFAULT_CONFIG,
    ROUND_ROBIN_CONFIG,
    SMALL_CONFIG,
    AcceleratorConfig,
    ArbitrationPolicy,
)


class TestAcceleratorConfig:
    def test_defaults(self):
        config = AcceleratorConfig()
        assert config.grid_dim == 4
        assert config.num_cores == 4
        assert config.burst_write_len == 5
        assert config.burst_read_len == 5
        assert config.arbitration == ArbitrationPolicy.FIXED_PRIORITY

    def test_burst_defaults_follow_grid(self):
        config = AcceleratorConfig(grid_dim=3, num_cores=1, mem_rows=8)
        assert config.load_payload_rows == 3
        assert config.unload_payload_rows == 3

    def test_derived_widths(self):
        config = AcceleratorConfig(grid_dim=2, num_cores=3, mem_rows=4)
        assert config.glb_rows == 2
        assert config.total_pes == 4
        assert config.load_word_bits == 32
        assert config.unload_word_bits == 44
        assert config.core_bits == 2
        assert config.mem_addr_bits == 2
        assert config.unit_addr_bits == 3
        assert config.glb_addr_bits == 1
        assert config.burst_bits == 2
        assert config.bus_addr_bits == 2

    def test_count_covers_longest_phase(self):
        for config in (DEFAULT_CONFIG, SMALL_CONFIG):
            longest = max(config.mem_rows, 4 * config.grid_dim, config.max_burst_len) + 2
            assert (1 << config.count_bits) > longest

    def test_presets(self):
        assert SMALL_CONFIG.grid_dim == 2
        assert SMALL_CONFIG.num_cores == 2
        assert SMALL_CONFIG.load_payload_rows == 1
        assert SMALL_CONFIG.unload_payload_rows == 2
        assert ROUND_ROBIN_CONFIG.arbitration == ArbitrationPolicy.ROUND_ROBIN

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"grid_dim": 0},
            {"num_cores": 0},
            {"burst_write_len": 1},
            {"burst_read_len": 1},
            {"grid_dim": 2, "burst_read_len": 4},
            {"mem_rows": 4, "burst_write_len": 6},
            {"acc_bits": 16},
        ],
    )
    def test_invalid_configs(self, kwargs):
        with pytest.raises(AssertionError):
            AcceleratorConfig(**kwargs)
