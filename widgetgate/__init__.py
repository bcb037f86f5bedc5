# widgetgate/__init__.py
"""
Admission control for embeddable contractor calculator widgets.
"""

__version__ = "1.0.0"
