import pytest

EPOCH = 1609459200000


class FakeClock:
    """Replays scripted millisecond readings, then repeats the last one."""

    def __init__(self, *readings):
        self.readings = list(readings)
        self.calls = 0

    def set(self, reading):
        self.readings = [reading]

    def __call__(self):
        self.calls += 1
        if len(self.readings) > 1:
            return self.readings.pop(0)
        return self.readings[0]


@pytest.fixture
def clock():
    return FakeClock(EPOCH + 1000)
