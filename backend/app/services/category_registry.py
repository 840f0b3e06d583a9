from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

LOGGER = logging.getLogger("athan_notes.categories")

USER_CONFIG_FILE_NAME = "categories.json"
EXAMPLE_CONFIG_FILE_NAME = "categories.example.json"
DEFAULT_CATEGORY_ICON = "📝"


class CategoryConfigError(ValueError):
    pass


class CategoryDefinition(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str = Field(min_length=1)
    icon: str = Field(min_length=1)
    description: str = Field(min_length=1)


class CategoriesFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    categories: list[CategoryDefinition] = Field(min_length=1)


@dataclass(frozen=True)
class CategoryRegistry:
    categories: tuple[CategoryDefinition, ...]

    def names(self) -> list[str]:
        return [category.name for category in self.categories]

    def icon(self, name: str) -> str:
        category = self._find(name)
        return category.icon if category is not None else DEFAULT_CATEGORY_ICON

    def description(self, name: str) -> str:
        category = self._find(name)
        return category.description if category is not None else ""

    def all(self) -> list[CategoryDefinition]:
        return list(self.categories)

    def is_valid(self, name: str) -> bool:
        return self._find(name) is not None

    def _find(self, name: str) -> CategoryDefinition | None:
        for category in self.categories:
            if category.name == name:
                return category
        return None


def resolve_categories_config_path(config_dir: Path) -> Path:
    user_config_path = config_dir / USER_CONFIG_FILE_NAME
    if user_config_path.is_file():
        return user_config_path

    example_config_path = config_dir / EXAMPLE_CONFIG_FILE_NAME
    if example_config_path.is_file():
        LOGGER.warning(
            "no %s found; using %s as fallback. Copy it to %s to customize categories. dir=%s",
            USER_CONFIG_FILE_NAME,
            EXAMPLE_CONFIG_FILE_NAME,
            USER_CONFIG_FILE_NAME,
            config_dir,
        )
        return example_config_path

    raise CategoryConfigError(
        "Failed to load categories config: no category configuration file found. "
        f"Create {user_config_path} or restore {example_config_path}."
    )


def load_category_registry(config_dir: Path) -> CategoryRegistry:
    config_path = resolve_categories_config_path(config_dir)
    try:
        raw_payload = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CategoryConfigError(f"Failed to load categories config: {exc}") from exc

    try:
        parsed = CategoriesFile.model_validate_json(raw_payload)
    except ValidationError as exc:
        raise CategoryConfigError(
            f"Failed to load categories config: {_format_validation_issues(exc)}"
        ) from exc

    names = [category.name for category in parsed.categories]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise CategoryConfigError(
            f"Failed to load categories config: duplicate category names {duplicates}"
        )

    LOGGER.info("categories loaded path=%s names=%s", config_path, names)
    return CategoryRegistry(categories=tuple(parsed.categories))


def _format_validation_issues(exc: ValidationError) -> str:
    return ", ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
