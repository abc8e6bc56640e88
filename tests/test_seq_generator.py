import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from seq_generator import (  # type: ignore  # pylint: disable=import-error
    LCG_INCREMENT,
    LCG_MULTIPLIER,
    MASK64,
    GeneratorRegistry,
    SequenceGenerator,
    derive_seed,
)


def test_first_step_from_zero_seed():
    gen = SequenceGenerator(0)
    assert gen.next_u64() == LCG_INCREMENT
    assert gen.next_u64() == (LCG_INCREMENT * LCG_MULTIPLIER + LCG_INCREMENT) & MASK64


def test_same_seed_same_stream():
    first = SequenceGenerator(42)
    second = SequenceGenerator(42)
    assert [first.next_u64() for _ in range(10)] == [second.next_u64() for _ in range(10)]


def test_below_stays_in_range():
    gen = SequenceGenerator(7)
    values = [gen.below(10) for _ in range(500)]
    assert min(values) >= 0
    assert max(values) < 10
    assert len(set(values)) == 10


def test_below_full_32_bit_range():
    gen = SequenceGenerator(3)
    assert all(0 <= gen.below(1 << 32) < 1 << 32 for _ in range(100))


@pytest.mark.parametrize("bound", [0, -1, (1 << 32) + 1])
def test_below_rejects_bad_bounds(bound):
    with pytest.raises(ValueError):
        SequenceGenerator(1).below(bound)


def test_randbytes_length():
    assert len(SequenceGenerator(5).randbytes(6)) == 6


def test_registry_creates_streams_lazily():
    registry = GeneratorRegistry(seed=1)
    assert "ip_id" not in registry
    stream = registry.get("ip_id")
    assert registry.get("ip_id") is stream
    assert registry.names() == ["ip_id"]


def test_streams_are_independent():
    registry = GeneratorRegistry(seed=1)
    interleaved = GeneratorRegistry(seed=1)
    expected = [registry.get("src_port").below(1000) for _ in range(5)]
    seen = []
    for _ in range(5):
        interleaved.get("ip_id").below(1000)
        seen.append(interleaved.get("src_port").below(1000))
    assert seen == expected


def test_overriding_one_seed_leaves_others_alone():
    plain = GeneratorRegistry(seed=9)
    tweaked = GeneratorRegistry(seed=9, seeds={"ip_id": 12345})
    assert plain.get("dst_port").next_u64() == tweaked.get("dst_port").next_u64()
    assert plain.get("ip_id").next_u64() != tweaked.get("ip_id").next_u64()
    assert tweaked.get("ip_id").seed == 12345


def test_derived_seeds_differ_per_name():
    assert derive_seed(0, "src_port") != derive_seed(0, "dst_port")
    assert derive_seed(1, "src_port") != derive_seed(2, "src_port")
