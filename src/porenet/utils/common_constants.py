"""
The module gives access to a set of unified units and numerical sentinels.

To access the quantities, invoke pn.KEY.

"""

import numpy as np

""" Units """
# SI Prefixes
NANO = 1e-9
MICRO = 1e-6
MILLI = 1e-3
KILO = 1e3

# Time
SECOND = 1.0
MINUTE = 60 * SECOND
HOUR = 60 * MINUTE
DAY = 24 * HOUR

# Length
METER = 1.0
MILLIMETER = MILLI * METER
MICROMETER = MICRO * METER

# Pressure related quantities
PASCAL = 1.0
PSI = 6894.757293168 * PASCAL
DARCY = 9.869233e-13
MILLIDARCY = MILLI * DARCY

# Viscosity
PASCAL_SECOND = 1.0
CENTIPOISE = MILLI * PASCAL_SECOND

""" Numerical sentinels """
# Conductivity assigned to closed elements and to elements excluded from a solve.
CLOSED_CONDUCTIVITY = 1e-200

# Time step returned when no element carries flux.
TIME_STEP_SENTINEL = 1e50

# Tolerance applied when comparing capillary pressures to entry pressures.
CAPILLARY_PRESSURE_TOLERANCE = 1e-5

# Shape factor thresholds between triangular, square and circular cross sections.
TRIANGLE_SHAPE_FACTOR = np.sqrt(3) / 36.0
SQUARE_SHAPE_FACTOR = 1.0 / 16.0
CIRCLE_SHAPE_FACTOR = 1.0 / (4 * np.pi)


def pa_to_psi(pressure):
    return pressure / PSI


def psi_to_pa(pressure):
    return pressure * PSI
