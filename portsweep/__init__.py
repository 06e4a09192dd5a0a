"""
PortSweep - rate limited TCP connect and banner scanner
"""

__version__ = "1.0.0"
