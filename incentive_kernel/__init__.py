"""
Incentive Kernel - shared infrastructure for the incentive engine.

Provides the pieces every incentive component builds on:
- Declarative ORM base with UUID keys and audit columns
- Engine/session management with explicit transaction scopes
- Typed exception hierarchy with machine-readable codes
- Structured JSON logging
- Injectable clock and workflow value objects
- Locked-counter sequence allocation
"""

__version__ = "0.1.0"
