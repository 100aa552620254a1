# =============================================================================
# justice_bus/__init__.py
# Tennessee Justice Bus - offline support core
# =============================================================================

__version__ = "1.0.0"
