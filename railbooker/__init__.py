"""
railbooker - Tatkal ticket booking automation

A single-workflow booking engine: a deterministic state machine drives
resilient step handlers against an abstract browser port.
"""

__version__ = "0.1.0"
