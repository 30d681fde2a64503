"""
Survey Data Platform

Loads, stacks and harmonizes multi-year public health survey files into
analysis-ready tables.

Subpackages:
    brfss: Behavioral Risk Factor Surveillance System (2011-2024)
    harmonization: Year-range keyed rule tables and their interpreter
    utils: Logging helpers
"""

__version__ = "1.0.0"
