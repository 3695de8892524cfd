"""
Prep — chronotype discovery and schedule sync scoring for students.
"""

__version__ = "0.4.0"
