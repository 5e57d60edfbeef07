import logging
import sys


def setup_logging(level: int | str = logging.INFO, log_file: str | None = None) -> None:
    """
    Configure the root echoclean logger.
    If *log_file* is given, logs go to that file; otherwise to stdout.
    Call once per process (host and engine each call it at startup).
    """
    logger = logging.getLogger("echoclean")

    if logger.handlers:
        return

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger.setLevel(level)
    logger.propagate = False

    if log_file:
        handler = logging.FileHandler(log_file)

        # Keep third-party chatter (soundfile, pydantic) out of the console too.
        root = logging.getLogger()
        root.handlers.clear()
        root.addHandler(handler)
        root.setLevel(logging.WARNING)
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(processName)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
