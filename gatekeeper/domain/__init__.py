"""Domain layer: enums, error taxonomy and exceptions.

No dependencies on infrastructure or presentation. Used by application
and infrastructure layers.
"""
