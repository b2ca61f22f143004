import threading

import pytest

from prompt_optimizer.core.errors import NotFoundError, StorageLockTimeout
from prompt_optimizer.core.storage import FileStorage


def test_write_read_roundtrip_creates_parents(storage, tmp_path):
    path = storage.write_text("a/b/c.md", "内容")

    assert path == tmp_path / "a" / "b" / "c.md"
    assert storage.read_text("a/b/c.md") == "内容"


def test_missing_file_is_not_found(storage):
    with pytest.raises(NotFoundError):
        storage.read_text("nope.txt")
    with pytest.raises(NotFoundError):
        storage.delete("nope.txt")
    with pytest.raises(NotFoundError):
        storage.copy("nope.txt", "other.txt")


def test_json_keeps_non_ascii(storage, tmp_path):
    storage.write_json("data.json", {"总分": 90})

    assert "总分" in (tmp_path / "data.json").read_text(encoding="utf-8")
    assert storage.read_json("data.json") == {"总分": 90}


def test_append_accumulates(storage):
    storage.append_text("log.jsonl", "one\n")
    storage.append_text("log.jsonl", "two\n")

    assert storage.read_text("log.jsonl") == "one\ntwo\n"


def test_create_exclusive_refuses_existing(storage):
    storage.create_exclusive("v1.md", "first")

    with pytest.raises(FileExistsError):
        storage.create_exclusive("v1.md", "second")
    assert storage.read_text("v1.md") == "first"


def test_list_dir_filters_and_sorts(storage):
    for name in ["b.md", "a.md", "c.txt"]:
        storage.write_text(f"dir/{name}", name)
    storage.write_text("dir/sub/d.md", "d")

    assert [r.name for r in storage.list_dir("dir")] == ["a.md", "b.md", "c.txt", "sub"]
    assert [r.name for r in storage.list_dir("dir", extensions=["md"])] == ["a.md", "b.md"]
    assert [r.name for r in storage.list_dir("dir", extensions=["md"], recursive=True)] == ["a.md", "b.md", "d.md"]

    with pytest.raises(NotFoundError):
        storage.list_dir("missing")


def test_copy_move_delete(storage, tmp_path):
    storage.write_text("src.md", "x")

    storage.copy("src.md", "copies/dst.md")
    storage.move("copies/dst.md", "moved.md")
    storage.delete("src.md")

    assert (tmp_path / "moved.md").read_text(encoding="utf-8") == "x"
    assert not (tmp_path / "src.md").exists()
    assert not (tmp_path / "copies" / "dst.md").exists()
    assert storage.stat("moved.md")["size"] == 1


def test_lock_times_out_for_other_threads(tmp_path):
    storage = FileStorage(base_path=tmp_path, lock_timeout=0.05)
    errors = []

    def contend():
        try:
            storage.write_text("busy.txt", "other")
        except StorageLockTimeout as e:
            errors.append(e)

    with storage.lock("busy.txt"):
        # Re-entrant in the owning thread
        storage.write_text("busy.txt", "mine")
        worker = threading.Thread(target=contend)
        worker.start()
        worker.join()

    assert len(errors) == 1
    assert storage.read_text("busy.txt") == "mine"


@pytest.mark.parametrize("operation", ["copy", "move"])
def test_copy_and_move_wait_for_the_source_lock(tmp_path, operation):
    storage = FileStorage(base_path=tmp_path, lock_timeout=0.05)
    storage.write_text("src.md", "complete")
    errors = []

    def contend():
        try:
            getattr(storage, operation)("src.md", "dst.md")
        except StorageLockTimeout as e:
            errors.append(e)

    with storage.lock("src.md"):
        worker = threading.Thread(target=contend)
        worker.start()
        worker.join()

    assert len(errors) == 1
    assert not (tmp_path / "dst.md").exists()
    assert (tmp_path / "src.md").read_text(encoding="utf-8") == "complete"
