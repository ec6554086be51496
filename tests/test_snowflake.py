import threading
import time

import pytest

from conftest import EPOCH, FakeClock
from snowgen.core.exceptions import (
    ClockMovedBackwardError,
    ClockStalledError,
    ConfigurationError,
    InterruptedWaitError,
    TimestampOverflowError,
)
from snowgen.utils.snowflake import ROLLOVER_RESEED_RANGE, IdGenerator, SnowflakeConfig


def make_generator(clock=None, **overrides):
    options = {
        "data_center_id": 1,
        "machine_id": 2,
        "epoch": EPOCH,
    }
    options.update(overrides)
    if clock is not None:
        options["clock"] = clock
    return IdGenerator(**options)


class TestConfiguration:
    def test_standard_layout_fills_63_bits(self):
        config = SnowflakeConfig(data_center_id_bits=5, machine_id_bits=5, sequence_bits=12)

        assert config.max_sequence == 4095
        assert config.timestamp_shift == 22
        assert config.data_center_id_shift == 17
        assert config.machine_id_shift == 12
        assert config.node_id_bits == 10

    def test_bit_overflow_is_rejected(self):
        with pytest.raises(ConfigurationError):
            SnowflakeConfig(data_center_id_bits=5, machine_id_bits=5, sequence_bits=13)

    def test_negative_width_is_rejected(self):
        with pytest.raises(ConfigurationError):
            SnowflakeConfig(sequence_bits=-1)

    def test_negative_drift_is_rejected(self):
        with pytest.raises(ConfigurationError):
            SnowflakeConfig(max_clock_drift_ms=-1)

    @pytest.mark.parametrize(
        "ids", [{"data_center_id": 32}, {"machine_id": 32}, {"machine_id": -1}]
    )
    def test_node_id_out_of_range_is_rejected(self, ids):
        with pytest.raises(ConfigurationError):
            make_generator(**ids)

    def test_smaller_layout_bounds_node_ids(self):
        with pytest.raises(ConfigurationError):
            make_generator(data_center_id=2, data_center_id_bits=1)

        generator = make_generator(data_center_id=1, data_center_id_bits=1)
        assert generator.config.max_data_center_id == 1

    def test_configuration_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            SnowflakeConfig(data_center_id=99)

    def test_decode_rejects_ids_wider_than_63_bits(self):
        config = SnowflakeConfig()
        with pytest.raises(ValueError):
            config.decode(1 << 63)
        with pytest.raises(ValueError):
            config.decode(-1)


class TestNextId:
    def test_same_millisecond_scenario(self, clock):
        generator = make_generator(clock)

        first = generator.decode(generator.next_id())
        second = generator.decode(generator.next_id())

        assert first.timestamp_delta == 1000
        assert first.data_center_id == 1
        assert first.machine_id == 2
        assert first.sequence == 1
        assert first.timestamp == EPOCH + 1000
        assert second.timestamp_delta == 1000
        assert second.sequence == 2

    def test_sequence_continues_into_the_next_millisecond(self):
        clock = FakeClock(EPOCH + 1000, EPOCH + 1001)
        generator = make_generator(clock)

        generator.next_id()
        parts = generator.decode(generator.next_id())

        assert parts.timestamp_delta == 1001
        assert parts.sequence == 2

    def test_ids_are_unique_and_increasing(self):
        generator = make_generator()

        ids = [generator.next_id() for _ in range(10000)]

        assert len(set(ids)) == len(ids)
        assert ids == sorted(ids)
        deltas = [generator.decode(i).timestamp_delta for i in ids]
        assert deltas == sorted(deltas)

    def test_decoded_fields_match_configuration(self):
        generator = make_generator(data_center_id=31, machine_id=17)

        for snowflake_id in generator.next_ids(500):
            parts = generator.decode(snowflake_id)
            assert parts.data_center_id == 31
            assert parts.machine_id == 17
            assert 0 <= parts.sequence <= generator.config.max_sequence
            assert 0 <= snowflake_id < (1 << 63)

    def test_full_width_layout_produces_63_bit_ids(self, clock):
        generator = make_generator(
            clock, data_center_id_bits=0, machine_id_bits=0, sequence_bits=22,
            data_center_id=0, machine_id=0,
        )

        parts = generator.decode(generator.next_id())

        assert parts.timestamp_delta == 1000
        assert parts.sequence == 1

    def test_clock_before_epoch_is_rejected(self):
        generator = make_generator(FakeClock(EPOCH - 1))

        with pytest.raises(TimestampOverflowError):
            generator.next_id()

    def test_next_ids_rejects_negative_count(self):
        with pytest.raises(ValueError):
            make_generator().next_ids(-1)


class TestClockDrift:
    def test_small_backward_jump_is_waited_out(self):
        clock = FakeClock(EPOCH + 1000, EPOCH + 997, EPOCH + 1000)
        generator = make_generator(clock, max_clock_drift_ms=5)

        first = generator.decode(generator.next_id())
        started = time.monotonic()
        second = generator.decode(generator.next_id())

        assert time.monotonic() - started >= 0.002
        assert second.timestamp_delta >= first.timestamp_delta
        assert second.sequence == 2

    def test_large_backward_jump_fails_without_touching_state(self):
        clock = FakeClock(EPOCH + 1000, EPOCH + 990, EPOCH + 1000)
        generator = make_generator(clock, max_clock_drift_ms=5)
        generator.next_id()

        with pytest.raises(ClockMovedBackwardError) as exc_info:
            generator.next_id()

        assert exc_info.value.drift_ms == 10
        parts = generator.decode(generator.next_id())
        assert parts.timestamp_delta == 1000
        assert parts.sequence == 2

    def test_clock_still_behind_after_wait_reuses_last_millisecond(self):
        clock = FakeClock(EPOCH + 1000, EPOCH + 998)
        generator = make_generator(clock, max_clock_drift_ms=5)
        first = generator.decode(generator.next_id())

        second = generator.decode(generator.next_id())
        third = generator.decode(generator.next_id())

        assert first.timestamp_delta == second.timestamp_delta == third.timestamp_delta == 1000
        assert [first.sequence, second.sequence, third.sequence] == [1, 2, 3]

    def test_interrupted_wait_leaves_state_unchanged(self):
        clock = FakeClock(EPOCH + 3000, EPOCH + 1000, EPOCH + 3000)
        generator = make_generator(clock, max_clock_drift_ms=5000)
        generator.next_id()
        errors = []

        def call():
            try:
                generator.next_id()
            except InterruptedWaitError as e:
                errors.append(e)

        worker = threading.Thread(target=call)
        worker.start()
        deadline = time.monotonic() + 1
        while not generator.interrupt() and time.monotonic() < deadline:
            time.sleep(0.001)
        worker.join(timeout=1)

        assert not worker.is_alive()
        assert len(errors) == 1
        parts = generator.decode(generator.next_id())
        assert parts.timestamp_delta == 3000
        assert parts.sequence == 2

    def test_interrupt_without_pending_wait_is_ignored(self):
        clock = FakeClock(EPOCH + 1000, EPOCH + 999, EPOCH + 1000)
        generator = make_generator(clock, max_clock_drift_ms=5)
        generator.next_id()

        assert generator.interrupt() is False
        parts = generator.decode(generator.next_id())

        assert parts.timestamp_delta == 1000
        assert parts.sequence == 2

class TestRollover:
    def test_exhausted_sequence_waits_for_next_millisecond(self):
        clock = FakeClock(*([EPOCH + 1000] * 6), EPOCH + 1001)
        generator = make_generator(clock, sequence_bits=2)

        sequences = [generator.decode(generator.next_id()).sequence for _ in range(3)]
        rolled = generator.decode(generator.next_id())

        assert sequences == [1, 2, 3]
        assert rolled.timestamp_delta == 1001
        assert rolled.sequence in (0, 1, 2)

    def test_rollover_after_clock_advanced_does_not_wait(self):
        clock = FakeClock(EPOCH + 1000, EPOCH + 1005)
        generator = make_generator(clock, sequence_bits=1)

        generator.next_id()
        parts = generator.decode(generator.next_id())

        assert parts.timestamp_delta == 1005
        assert parts.sequence in (0, 1)

    def test_frozen_clock_after_rollover_raises(self, clock):
        generator = make_generator(clock, sequence_bits=1, rollover_timeout_ms=5)
        generator.next_id()

        with pytest.raises(ClockStalledError):
            generator.next_id()

        clock.set(EPOCH + 1001)
        parts = generator.decode(generator.next_id())
        assert parts.timestamp_delta == 1001

    def test_rollover_reseeds_sequence_from_random_range(self, monkeypatch):
        calls = []

        def fake_randrange(stop):
            calls.append(stop)
            return 2

        monkeypatch.setattr("snowgen.utils.snowflake.random.randrange", fake_randrange)
        clock = FakeClock(*([EPOCH + 1000] * 4), EPOCH + 1001)
        generator = make_generator(clock, sequence_bits=2)
        generator.next_ids(3)

        rolled = generator.decode(generator.next_id())
        following = generator.decode(generator.next_id())

        assert calls == [ROLLOVER_RESEED_RANGE]
        assert (rolled.timestamp_delta, rolled.sequence) == (1001, 2)
        assert (following.timestamp_delta, following.sequence) == (1001, 3)

    def test_rollover_reseed_is_masked_to_sequence_width(self, monkeypatch):
        monkeypatch.setattr("snowgen.utils.snowflake.random.randrange", lambda stop: 2)
        clock = FakeClock(EPOCH + 1000, EPOCH + 1000, EPOCH + 1001)
        generator = make_generator(clock, sequence_bits=1)
        generator.next_id()

        rolled = generator.decode(generator.next_id())

        assert (rolled.timestamp_delta, rolled.sequence) == (1001, 0)

    def test_all_sequences_of_a_millisecond_are_distinct(self):
        generator = make_generator(sequence_bits=3)

        ids = generator.next_ids(200)

        assert len(set(ids)) == 200


class TestConcurrency:
    def test_threads_sharing_a_generator_get_distinct_ids(self):
        generator = make_generator()
        results = []
        results_lock = threading.Lock()

        def worker():
            produced = [generator.next_id() for _ in range(2500)]
            with results_lock:
                results.extend(produced)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 8 * 2500
        assert len(set(results)) == len(results)


class TestReconfigure:
    def test_new_configuration_applies_to_later_ids(self, clock):
        generator = make_generator(clock)
        generator.next_id()

        generator.reconfigure(machine_id=3)

        assert generator.machine_id == 3
        assert generator.decode(generator.next_id()).machine_id == 3

    def test_invalid_configuration_keeps_the_old_one(self):
        generator = make_generator()
        before = generator.config

        with pytest.raises(ConfigurationError):
            generator.reconfigure(sequence_bits=20)

        assert generator.config is before
