"""
Invoice approval workflows, fraud/compliance analysis and collections automation.
"""

__version__ = "0.1.0"
