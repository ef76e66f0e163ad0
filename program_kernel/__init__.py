"""
Program Kernel

Shared infrastructure for member program finance:
- Database engine, sessions and declarative base classes
- Financial-grade column types and rounding
- Typed exception hierarchy
- Structured JSON logging
- Injectable clock and request deadlines
"""

__version__ = "0.1.0"
