"""Timing of porenet functions.

Timing is controlled by the configuration file porenet.cfg, which should be placed
in the current working directory (where the python script is initiated). All
timing-related information is located in a section with heading logging; see the
sample file below.

By default, timing is switched off. It is turned on by setting the keyword
'active' to True. Timed functions are classified in the following (overlapping)
sections, so that only parts of the code can be timed:

    all: Time all decorated functions.
    clustering: Connected component labelling of the network.
    operations: Network-wide assignment of conductivities, volumes, wettability.
    solver: Assembly and solution of the pressure system.
    simulations: Steps of displacement and transport simulations.

Example logging section of porenet.cfg:

    [logging]
    # Activate timing. Without this, the rest of the section has no effect
    active: True
    # multiple sections are separated by commas:
    sections: solver, clustering
    # name of the file the timings are written to
    file: porenetTimings.log

"""

from __future__ import annotations

import functools
import logging
import time

import porenet as pn

__all__ = ["time_logger"]


_config: dict = pn.config.get("logging", {})
active_sections = [
    s.strip().lower() for s in _config.get("sections", "all").split(",")
]
logger_is_active = _config.get("active", "false").strip().lower() == "true"
always_log = "all" in active_sections

t_logger = logging.getLogger("Timer")
t_logger.setLevel(logging.INFO)

if logger_is_active and not t_logger.hasHandlers():
    time_handler = logging.FileHandler(_config.get("file", "porenetTimings.log"))
    time_handler.setLevel(logging.INFO)
    time_handler.setFormatter(logging.Formatter("%(message)s"))
    t_logger.addHandler(time_handler)


def time_logger(sections: list[str]):
    """A decorator that measures elapsed time for a function."""

    # The double nesting allows the decorator to take arguments.
    def inner_func(func):
        @functools.wraps(func)
        def log_time(*args, **kwargs):
            if not logger_is_active:
                return func(*args, **kwargs)
            elif always_log or any(s in active_sections for s in sections):
                name = f"{func.__qualname__} in module {func.__module__}."
                t_logger.info(f"Calling {name}")

                start_time = time.perf_counter()
                value = func(*args, **kwargs)
                run_time = time.perf_counter() - start_time

                t_logger.info(f"Finished {name} Elapsed time: {run_time:.8f} s")
                return value
            else:
                return func(*args, **kwargs)

        return log_time

    return inner_func
