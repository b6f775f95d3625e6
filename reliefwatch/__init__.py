"""
ReliefWatch — live disaster alert monitoring with automatic campaign escalation.
"""

__version__ = "1.0.0"
