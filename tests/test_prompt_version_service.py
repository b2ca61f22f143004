import json

import pytest

from prompt_optimizer.core.errors import ConflictError, CorruptFileError, NotFoundError, ValidationError
from prompt_optimizer.services.prompt_version_service import PromptVersionService, parse_version

SCENE = "product/weekly"


def test_first_save_is_v1(versions):
    saved = versions.save(SCENE, "# Prompt v1", "initial")

    assert saved.version == 1
    assert saved.id == "v1"
    assert saved.path.endswith("prompts/product/weekly/v1.md")

    index = versions.read_index()
    meta = index.scenes[SCENE]
    assert meta.current_version == "v1"
    assert [(v.id, v.note) for v in meta.versions] == [("v1", "initial")]


def test_numbering_is_numeric_past_nine(versions):
    for n in range(1, 12):
        versions.save(SCENE, f"prompt {n}")

    listed = versions.list(SCENE)

    assert [v.id for v in listed][:3] == ["v11", "v10", "v9"]
    assert listed[-1].id == "v1"
    assert versions.save(SCENE, "next").version == 12
    assert versions.get(SCENE).content == "next"


def test_save_skips_gaps_left_by_foreign_files(versions, workspace):
    scene_dir = workspace.prompts_dir / SCENE
    scene_dir.mkdir(parents=True)
    (scene_dir / "v4.md").write_text("manual", encoding="utf-8")
    (scene_dir / "draft.md").write_text("ignored", encoding="utf-8")

    assert versions.save(SCENE, "new").version == 5


def test_list_reports_notes(versions):
    versions.save(SCENE, "a", "first")
    versions.save(SCENE, "b", "second")

    listed = versions.list(SCENE)

    assert [(v.number, v.note) for v in listed] == [(2, "second"), (1, "first")]
    assert all(v.created_at for v in listed)


def test_list_unknown_scene_is_empty(versions):
    assert versions.list("hr/exit") == []


def test_get_resolution_order(versions, workspace):
    versions.save(SCENE, "one")
    versions.save(SCENE, "two")

    assert versions.get(SCENE).content == "two"
    assert versions.get(SCENE, "1").content == "one"
    assert versions.get(SCENE, "v1").version == "v1"

    (workspace.prompts_dir / SCENE / "default.md").write_text("default prompt", encoding="utf-8")
    resolved = versions.get(SCENE)
    assert resolved.content == "default prompt"
    assert resolved.version is None


def test_get_missing(versions, workspace):
    with pytest.raises(NotFoundError):
        versions.get("hr/exit")

    versions.save(SCENE, "one")
    with pytest.raises(NotFoundError):
        versions.get(SCENE, "v7")

    (workspace.prompts_dir / "hr" / "team").mkdir(parents=True)
    with pytest.raises(NotFoundError):
        versions.get("hr/team")


def test_download_copies_verbatim(versions, tmp_path):
    versions.save(SCENE, "# 提示词\n内容")

    path = versions.download(SCENE, "v1", tmp_path / "out" / "prompt.md")

    assert path.read_text(encoding="utf-8") == "# 提示词\n内容"


def test_conflict_is_retried_once(versions, storage, monkeypatch):
    real_create = storage.create_exclusive
    calls = []

    def racing_create(path, content):
        calls.append(path.name)
        if len(calls) == 1:
            # Another writer takes v1 first
            real_create(path, "from another writer")
            raise FileExistsError(path)
        return real_create(path, content)

    monkeypatch.setattr(storage, "create_exclusive", racing_create)

    saved = versions.save(SCENE, "mine")

    assert calls == ["v1.md", "v2.md"]
    assert saved.version == 2
    assert versions.get(SCENE, "v2").content == "mine"


def test_second_conflict_raises(versions, storage, monkeypatch):
    def always_taken(path, content):
        raise FileExistsError(path)

    monkeypatch.setattr(storage, "create_exclusive", always_taken)

    with pytest.raises(ConflictError):
        versions.save(SCENE, "mine")
    assert versions.read_index().scenes == {}


def test_index_is_shared_across_scenes(versions, workspace):
    versions.save(SCENE, "a")
    versions.save("hr/exit", "b")

    raw = json.loads((workspace.prompts_dir / "_meta" / "index.json").read_text(encoding="utf-8"))
    assert set(raw["scenes"]) == {SCENE, "hr/exit"}


@pytest.mark.parametrize("scene", ["", "../etc", "_meta"])
def test_invalid_scene(versions, scene):
    with pytest.raises(ValidationError):
        versions.save(scene, "x")


def test_parse_version():
    assert parse_version("3") == 3
    assert parse_version("v12") == 12
    assert parse_version("v2.md") == 2
    with pytest.raises(ValidationError):
        parse_version("latest")


def test_works_with_default_storage(tmp_path):
    service = PromptVersionService(tmp_path / "prompts")

    assert service.save("rd/incident", "x").version == 1


@pytest.mark.parametrize("raw", ["{not json", json.dumps({"scenes": {"hr/exit": {"versions": "v1"}}})])
def test_corrupt_index_fails_before_writing(versions, raw):
    versions.index_path.parent.mkdir(parents=True, exist_ok=True)
    versions.index_path.write_text(raw, encoding="utf-8")

    with pytest.raises(CorruptFileError) as exc:
        versions.save("hr/exit", "prompt")

    assert "index.json" in str(exc.value)
    assert not (versions.prompts_dir / "hr" / "exit").exists()
