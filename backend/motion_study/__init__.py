"""Motion Study: automatic work-cycle detection for time-and-motion study."""

__version__ = "1.0.0"
