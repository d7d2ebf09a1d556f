"""
Definitions - Stored, reusable visage definitions.

Local definitions belong to one owner and default to identity mode; global
definitions are shared and default to overlay mode.
"""

from .definition import VisageDefinition, DefinitionScope
from .validation import ValidationResult, validate_definition, validate_payload
from .library import DefinitionLibrary, scrub_payload

__all__ = [
    "VisageDefinition",
    "DefinitionScope",
    "ValidationResult",
    "validate_definition",
    "validate_payload",
    "DefinitionLibrary",
    "scrub_payload",
]
