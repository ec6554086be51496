import pytest

from snowgen.core.config import Settings
from snowgen.core.exceptions import ConfigurationError
from snowgen.services import generator as shared


@pytest.fixture(autouse=True)
def reset_shared_generator():
    shared.shutdown_generator()
    yield
    shared.shutdown_generator()


def test_init_generator_uses_settings():
    generator = shared.init_generator(
        Settings(DATA_CENTER_ID=3, MACHINE_ID=4, SEQUENCE_BITS=10)
    )

    assert shared.get_generator() is generator
    parts = generator.decode(shared.next_id())
    assert (parts.data_center_id, parts.machine_id) == (3, 4)
    assert generator.config.max_sequence == 1023


def test_get_generator_initializes_lazily_once():
    first = shared.get_generator()

    assert shared.get_generator() is first


def test_shutdown_drops_the_instance():
    first = shared.get_generator()

    shared.shutdown_generator()

    assert shared.get_generator() is not first


def test_invalid_settings_prevent_creation():
    with pytest.raises(ConfigurationError):
        shared.init_generator(Settings(DATA_CENTER_ID=1, MACHINE_ID=1, SEQUENCE_BITS=20))

    assert shared.snowflake_generator is None


def test_shared_ids_are_unique():
    ids = [shared.next_id() for _ in range(2000)]

    assert len(set(ids)) == len(ids)
