"""
dvirsync - progressive synchronization of MyGeotab DVIR inspections.
"""

__version__ = "0.1.0"
