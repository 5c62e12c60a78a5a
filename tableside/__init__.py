"""
                Tableside

Front-of-house backend for dine-in restaurants: order lifecycle,
table occupancy reconciliation and the event fabric connecting them.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
