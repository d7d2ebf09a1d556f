"""
Visage - Layered appearance overrides for scene entities.

An entity's appearance is its base snapshot with a stack of override
layers folded on top. The engine provides:
- Pure resolution of a stack onto a base
- Stack mutations that write fields and state as one unit
- A library of reusable local and global definitions
- Condition-driven automation that applies and removes layers
"""

__version__ = "0.1.0"
