"""Logging setup for the command-line entry point."""

import logging


def configure_logging(verbose: bool = False) -> None:
    """
    Route library logging to stderr with a timestamp prefix.

    Args:
        verbose: Show DEBUG messages (and third-party INFO chatter)
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(asctime)s] %(message)s",
        datefmt="%H:%M:%S",
        force=True,
    )
    if not verbose:
        for noisy in ("paramiko", "urllib3", "google.auth"):
            logging.getLogger(noisy).setLevel(logging.WARNING)
