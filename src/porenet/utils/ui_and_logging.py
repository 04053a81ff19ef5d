"""This module contains functionality for logging and tqdm progress bars."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from tqdm.autonotebook import tqdm as progressbar_class  # type: ignore
from tqdm.contrib.logging import (  # type: ignore
    _get_first_found_console_logging_handler,
    _TqdmLoggingHandler,
    logging_redirect_tqdm,
)


class DummyProgressBar:
    """Replacement for :class:`~tqdm.tqdm` when progress bars are switched off.

    All methods of :class:`~tqdm.tqdm` called by
    :mod:`~porenet.simulations.orchestrator` are replaced with empty methods.

    """

    def __init__(self, *args, **kwargs):
        pass

    def update(self, *args, **kwargs):
        pass

    def set_description_str(self, *args, **kwargs):
        pass

    def set_postfix_str(self, *args, **kwargs):
        pass

    def close(self):
        pass


@contextmanager
def logging_redirect_tqdm_with_level(
    loggers: list[logging.Logger] | None = None,
    tqdm_class: type = progressbar_class,
) -> Iterator[None]:
    """Extend ``tqdm.contrib.logging_redirect_tqdm`` such that the level of the
    original console handler is kept.

    Parameters:
        loggers: List of loggers to redirect. If not provided, the root logger is
            used.
        tqdm_class: The class used for the progress bar.

    Returns:
        A context in which log records are written through the progress bar.

    """
    # The handlers installed by ``logging_redirect_tqdm`` ignore the level of the
    # handler they replace (https://github.com/tqdm/tqdm/issues/1272).
    if tqdm_class is DummyProgressBar:
        yield
        return

    if loggers is None:
        loggers = [logging.root]
    original_handlers: dict[logging.Logger, logging.Handler | None] = {
        logger: _get_first_found_console_logging_handler(logger.handlers)
        for logger in loggers
    }
    with logging_redirect_tqdm(loggers, tqdm_class):
        for logger, orig_handler in original_handlers.items():
            for handler in logger.handlers:
                if isinstance(handler, _TqdmLoggingHandler):
                    if orig_handler is not None:
                        handler.level = orig_handler.level
                    else:
                        handler.level = logger.level
        yield
