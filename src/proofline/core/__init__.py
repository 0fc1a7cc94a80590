"""Core value types shared across the engine."""

from .categories import CategoryInfo, CategoryRegistry, category_registry
from .ranges import TextSpan

__all__ = ["TextSpan", "CategoryInfo", "CategoryRegistry", "category_registry"]
