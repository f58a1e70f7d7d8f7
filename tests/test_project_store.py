import json
import pytest

from storage.project_store import ProjectStore


def _project(project_id, **extra):
    data = {
        "id": project_id,
        "name": f"group/{project_id}",
        "gitlab_url": "https://gitlab.example.com",
        "access_token": "secret-token",
    }
    data.update(extra)
    return data


@pytest.fixture
def projects_file(tmp_path):
    path = tmp_path / "projects.json"
    path.write_text(
        json.dumps(
            [
                _project("a", user_mappings={"bob": "Bobby"}),
                _project("b", is_active=False),
                _project("c", deleted_at="2024-01-01T00:00:00Z"),
                {"id": "broken"},
            ]
        ),
        encoding="utf-8",
    )
    return path


def test_missing_file_has_no_projects(tmp_path):
    assert ProjectStore(str(tmp_path / "none.json")).find_all() == []


def test_invalid_entries_are_skipped(projects_file):
    store = ProjectStore(str(projects_file))
    assert [p.id for p in store.find_all()] == ["a", "b", "c"]


def test_only_enabled_projects_are_active(projects_file):
    store = ProjectStore(str(projects_file))
    assert [p.id for p in store.find_active()] == ["a"]


def test_find_by_id(projects_file):
    store = ProjectStore(str(projects_file))
    assert store.find_by_id("b").name == "group/b"
    assert store.find_by_id("zzz") is None


def test_wrapped_document_is_supported(tmp_path):
    path = tmp_path / "projects.json"
    path.write_text(json.dumps({"projects": [_project("a")]}), encoding="utf-8")
    assert [p.id for p in ProjectStore(str(path)).find_all()] == ["a"]


def test_update_user_mappings_replaces_names_and_keeps_secrets(projects_file):
    store = ProjectStore(str(projects_file))

    assert store.update_user_mappings("a", {"bob": "Bob Smith", "alice": "Alice"})

    project = store.find_by_id("a")
    assert project.user_mappings == {"bob": "Bob Smith", "alice": "Alice"}
    assert project.access_token.get_secret_value() == "secret-token"
    # entries that fail validation are preserved untouched
    raw = json.loads(projects_file.read_text(encoding="utf-8"))
    assert raw[-1] == {"id": "broken"}


def test_update_user_mappings_keeps_wrapper(tmp_path):
    path = tmp_path / "projects.json"
    path.write_text(json.dumps({"projects": [_project("a")]}), encoding="utf-8")

    assert ProjectStore(str(path)).update_user_mappings("a", {"bob": "Bob"})
    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["projects"][0]["user_mappings"] == {"bob": "Bob"}


def test_update_user_mappings_unknown_project(projects_file):
    assert not ProjectStore(str(projects_file)).update_user_mappings("zzz", {"x": "X"})
