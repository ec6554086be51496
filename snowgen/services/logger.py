import logging

ROOT_LOGGER_NAME = "snowgen"


def setup_logger(name: str = ROOT_LOGGER_NAME):
    """Returns a logger under the ``snowgen`` hierarchy.

    The first call installs a stream handler on the root logger; later calls
    leave existing handlers alone.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        handlers=[logging.StreamHandler()],
    )

    logging.getLogger(ROOT_LOGGER_NAME).setLevel(logging.DEBUG)

    return logging.getLogger(name)
