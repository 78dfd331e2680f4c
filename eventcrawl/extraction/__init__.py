from .base import ExtractionResult, Extractor
from .recipe import RecipeExtractor, apply_recipe
from .waterfall import Waterfall

__all__ = [
    "ExtractionResult",
    "Extractor",
    "RecipeExtractor",
    "Waterfall",
    "apply_recipe",
]
