"""
Studio Kernel

Shared infrastructure for the studio operations platform:
- Typed exception hierarchy with machine-readable codes
- Structured JSON logging with request-scoped context
- SQLAlchemy declarative base and session management
- Injectable clock and declarative workflow state machines
"""

__version__ = "0.1.0"
