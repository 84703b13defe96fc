"""
ABOUTME: Quota service package: gem metering, token lockouts and admission control
ABOUTME: for the health chat product
"""

__version__ = "1.0.0"
