from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from conftest import write_categories

from backend.app.services.category_registry import (
    DEFAULT_CATEGORY_ICON,
    CategoryConfigError,
    load_category_registry,
    resolve_categories_config_path,
)

REPO_CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def test_load_category_registry_reads_user_config(tmp_path: Path) -> None:
    write_categories(tmp_path)

    registry = load_category_registry(tmp_path)

    assert registry.names() == ["Project", "Learning", "Personal", "Task"]
    assert registry.icon("Learning") == "📚"
    assert registry.description("Task") == "Actionable to-dos."
    assert registry.is_valid("Personal") is True


def test_registry_lookups_are_case_sensitive(tmp_path: Path) -> None:
    registry = load_category_registry(write_categories(tmp_path).parent)

    assert registry.is_valid("project") is False
    assert registry.icon("project") == DEFAULT_CATEGORY_ICON
    assert registry.description("Unknown") == ""


def test_falls_back_to_example_config(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    (tmp_path / "categories.example.json").write_text(
        json.dumps({"categories": [{"name": "Ideas", "icon": "💡", "description": "Ideas."}]}),
        encoding="utf-8",
    )

    with caplog.at_level(logging.WARNING, logger="athan_notes.categories"):
        path = resolve_categories_config_path(tmp_path)
        registry = load_category_registry(tmp_path)

    assert path.name == "categories.example.json"
    assert registry.names() == ["Ideas"]
    assert "categories.example.json" in caplog.text


def test_user_config_wins_over_example(tmp_path: Path) -> None:
    write_categories(tmp_path)
    (tmp_path / "categories.example.json").write_text(
        json.dumps({"categories": [{"name": "Ideas", "icon": "💡", "description": "Ideas."}]}),
        encoding="utf-8",
    )

    assert resolve_categories_config_path(tmp_path).name == "categories.json"


def test_missing_config_files_raise(tmp_path: Path) -> None:
    with pytest.raises(CategoryConfigError, match="Failed to load categories config"):
        load_category_registry(tmp_path)


def test_invalid_json_raises(tmp_path: Path) -> None:
    (tmp_path / "categories.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(CategoryConfigError, match="Failed to load categories config"):
        load_category_registry(tmp_path)


@pytest.mark.parametrize(
    "payload",
    [
        {"categories": []},
        {"categories": [{"name": "", "icon": "x", "description": "y"}]},
        {"categories": [{"name": "Project", "description": "missing icon"}]},
        {"items": []},
    ],
)
def test_schema_violations_raise(tmp_path: Path, payload: dict[str, object]) -> None:
    (tmp_path / "categories.json").write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(CategoryConfigError, match="Failed to load categories config"):
        load_category_registry(tmp_path)


def test_duplicate_category_names_raise(tmp_path: Path) -> None:
    write_categories(
        tmp_path,
        [
            {"name": "Project", "icon": "🚀", "description": "a"},
            {"name": "Project", "icon": "🛠", "description": "b"},
        ],
    )

    with pytest.raises(CategoryConfigError, match="duplicate category names"):
        load_category_registry(tmp_path)


def test_shipped_example_config_is_valid() -> None:
    registry = load_category_registry(REPO_CONFIG_DIR)

    assert set(registry.names()) == {"Project", "Learning", "Personal", "Task"}
    assert registry.icon("Personal") == "✨"
