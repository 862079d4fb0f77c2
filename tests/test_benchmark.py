"""
Smoke test for the benchmark CLI.
"""

import pytest

from secrethold.benchmark import run_benchmark

from conftest import TEST_ITERATIONS


async def test_run_benchmark_in_memory(capsys):
    result = await run_benchmark(test_quantity=3, iterations=TEST_ITERATIONS)

    assert result.test_quantity == 3
    assert result.wrong_pin_rejected
    assert "BENCHMARK COMPLETE" in capsys.readouterr().out


async def test_invalid_quantity():
    with pytest.raises(ValueError):
        await run_benchmark(test_quantity=0)
