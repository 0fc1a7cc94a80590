"""Registry of issue categories understood by the engine."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["CategoryInfo", "CategoryRegistry", "category_registry", "DEFAULT_CATEGORIES"]


@dataclass(slots=True, frozen=True)
class CategoryInfo:
    """Describes one issue category."""

    id: str
    name: str
    description: str
    default_enabled: bool = True


DEFAULT_CATEGORIES: tuple[CategoryInfo, ...] = (
    CategoryInfo("spelling", "Spelling", "Typos and misspellings"),
    CategoryInfo("grammar", "Grammar", "Subject-verb agreement, tense, articles"),
    CategoryInfo("style", "Style", "Repeated words, double spaces, duplicated punctuation"),
    CategoryInfo("clarity", "Clarity", "Wordy phrases with a standard shorter form"),
    CategoryInfo("tone", "Tone", "Harsh or unprofessional phrasing"),
    CategoryInfo("rephrase", "Rephrase", "Structurally broken sentences"),
)


class CategoryRegistry:
    """Ordered mapping of category id to :class:`CategoryInfo`."""

    def __init__(self, categories: tuple[CategoryInfo, ...] = DEFAULT_CATEGORIES) -> None:
        self._categories: dict[str, CategoryInfo] = {}
        for category in categories:
            self.register(category)

    def register(self, category: CategoryInfo) -> None:
        key = category.id.strip().lower()
        if not key:
            raise ValueError("Category id must not be empty")
        self._categories[key] = category

    def get(self, category_id: str) -> CategoryInfo | None:
        return self._categories.get(category_id.strip().lower())

    def is_known(self, category_id: str | None) -> bool:
        if not category_id:
            return False
        return category_id.strip().lower() in self._categories

    def ids(self) -> tuple[str, ...]:
        return tuple(self._categories)

    def __contains__(self, category_id: object) -> bool:
        return isinstance(category_id, str) and self.is_known(category_id)

    def __len__(self) -> int:
        return len(self._categories)


category_registry = CategoryRegistry()
