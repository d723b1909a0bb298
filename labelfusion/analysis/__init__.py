"""
Reporting of estimated source performance.
"""

from labelfusion.analysis.report import ReportGenerator, performance_table, source_summary

__all__ = [
    "ReportGenerator",
    "performance_table",
    "source_summary",
]
