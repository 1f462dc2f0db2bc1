"""
White-label record label catalog: access-control core.
"""

__version__ = "0.1.0"
