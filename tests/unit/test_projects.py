from __future__ import annotations

import json
from pathlib import Path

from parley.projects import (
    ProjectCatalog,
    ProjectRecord,
    load_project_catalog,
    new_conversation_id,
    resolve_conversation_id,
)


def _record(project_id: str, conversation_id: str | None = None, **extra: object) -> ProjectRecord:
    return ProjectRecord(project_id=project_id, name=f"Project {project_id}", conversation_id=conversation_id, **extra)


def test_bound_conversation_id_prefers_explicit_binding() -> None:
    assert _record("p1", "conv-shop").bound_conversation_id == "conv-shop"
    assert _record("p2").bound_conversation_id == "project-p2"


def test_resolve_conversation_id_precedence() -> None:
    """Explicit binding > derived from record > current id > time-derived."""
    assert resolve_conversation_id(_record("p1", "conv-shop"), "current") == "conv-shop"
    assert resolve_conversation_id(_record("p2"), "current") == "project-p2"
    assert resolve_conversation_id(None, "current") == "current"
    assert resolve_conversation_id(None, None, clock=lambda: 42) == "conversation-42"


def test_new_conversation_id_is_time_derived() -> None:
    assert new_conversation_id(lambda: 1700000000000) == "conversation-1700000000000"


def test_catalog_binds_explicit_and_derived_ids() -> None:
    """Both binding styles should map back to their record without parsing the id."""
    shop = _record("shop", "conv-shop")
    blog = _record("blog")
    catalog = ProjectCatalog([shop, blog])

    assert catalog.record_for("conv-shop") is shop
    assert catalog.record_for("project-shop") is shop
    assert catalog.record_for("project-blog") is blog
    assert catalog.record_for("conversation-123") is None


def test_catalog_handles_ids_containing_the_prefix_separator() -> None:
    """Ids with dashes should resolve exactly; prefix parsing would get these wrong."""
    record = _record("web-app-2")
    catalog = ProjectCatalog([record, _record("web")])

    assert catalog.record_for("project-web-app-2") is record


def test_explicit_binding_wins_over_derived_collision() -> None:
    derived_owner = _record("x")
    explicit_owner = _record("y", "project-x")
    catalog = ProjectCatalog([derived_owner, explicit_owner])

    assert catalog.record_for("project-x") is explicit_owner


def test_to_context_uses_na_for_missing_values() -> None:
    text = _record("p1", frontend_stack=["React"], core_features=["Checkout"]).to_context()

    assert "Project Name: Project p1" in text
    assert "Frontend Stack: React" in text
    assert "Backend Stack: N/A" in text
    assert "Core Features:\n- Checkout" in text
    assert "Experience: N/A" in text


def test_load_catalog_from_primary_file(tmp_path: Path) -> None:
    primary = tmp_path / "experience.json"
    primary.write_text(
        json.dumps([{"project_id": "p1", "name": "Shop", "conversation_id": "conv-shop"}, {"name": "no id"}]),
        encoding="utf-8",
    )

    catalog = load_project_catalog(primary, tmp_path / "projects.json")

    assert [r.project_id for r in catalog] == ["p1"]
    assert catalog.record_for("conv-shop") is not None


def test_load_catalog_falls_back_to_projects_file(tmp_path: Path) -> None:
    fallback = tmp_path / "projects.json"
    fallback.write_text(json.dumps({"projects": [{"project_id": "p9", "name": "Old"}]}), encoding="utf-8")

    catalog = load_project_catalog(tmp_path / "missing.json", fallback)

    assert [r.project_id for r in catalog] == ["p9"]


def test_load_catalog_degrades_to_empty(tmp_path: Path) -> None:
    catalog = load_project_catalog(tmp_path / "missing.json", tmp_path / "also-missing.json")

    assert len(catalog) == 0


def test_non_utf8_catalog_files_degrade_to_empty(tmp_path: Path) -> None:
    primary = tmp_path / "experience.json"
    fallback = tmp_path / "projects.json"
    primary.write_bytes(b'[{"project_id": "p1", "name": "\xff"}]')
    fallback.write_bytes(b'{"projects": [{"project_id": "p2", "name": "\xfe"}]}')

    assert len(load_project_catalog(primary, fallback)) == 0


def test_non_utf8_primary_falls_back(tmp_path: Path) -> None:
    primary = tmp_path / "experience.json"
    fallback = tmp_path / "projects.json"
    primary.write_bytes(b"\xff\xfe")
    fallback.write_text(json.dumps({"projects": [{"project_id": "p2", "name": "Old"}]}), encoding="utf-8")

    assert [r.project_id for r in load_project_catalog(primary, fallback)] == ["p2"]
