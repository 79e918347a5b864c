import os

import pytest

from muxagent.domain import to_json_value
from muxagent.relayws.fsops import (
    FsEntry,
    FsSearchResult,
    PathOutsideProjectError,
    SymlinkEscapeError,
    list_dir,
    safe_path,
    search,
)


@pytest.fixture
def list_root(tmp_path):
    root = tmp_path / "root"
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.go").write_text("package main")
    (root / "README.md").write_text("# hi")
    (root / "empty").mkdir()
    return str(root)


@pytest.fixture
def search_root(tmp_path):
    root = tmp_path / "project"
    for sub in ("src/util", "src/controllers", "src/models", "cmd/main"):
        (root / sub).mkdir(parents=True)
    (root / "src" / "main.go").write_text("package main")
    (root / "src" / "util" / "helper.go").write_text("package util")
    (root / "src" / "main_test.go").write_text("package main")
    (root / "main.go").write_text("package main")
    (root / "README.md").write_text("# hi")
    (root / "Makefile").write_text("all:")
    return str(root)


def test_list_root_directory(list_root):
    entries = list_dir(list_root)
    names = [e.name for e in entries]
    assert names == ["empty", "src", "README.md"]
    assert [e.is_dir for e in entries] == [True, True, False]


def test_list_subdirectory(list_root):
    entries = list_dir(list_root, "src")
    assert entries == [FsEntry(name="main.go", path=os.path.join("src", "main.go"), is_dir=False)]


def test_list_dot_gives_bare_names(list_root):
    assert [e.path for e in list_dir(list_root, ".")] == ["empty", "src", "README.md"]


def test_path_traversal_rejected(list_root):
    with pytest.raises(PathOutsideProjectError) as info:
        list_dir(list_root, "../../etc")
    assert str(info.value) == "path outside project"


def test_symlink_escape_rejected(list_root, tmp_path):
    outside = tmp_path / "outside"
    outside.mkdir()
    os.symlink(outside, os.path.join(list_root, "escape"))
    with pytest.raises(SymlinkEscapeError) as info:
        list_dir(list_root, "escape")
    assert str(info.value) == "symlink escape detected"


def test_empty_directory(list_root):
    assert list_dir(list_root, "empty") == []


def test_missing_directory_raises(list_root):
    with pytest.raises(FileNotFoundError):
        list_dir(list_root, "nothing-here")


def test_max_entries_limit(tmp_path):
    for i in range(250):
        (tmp_path / f"file_{i:03d}.txt").write_text("x")
    entries = list_dir(str(tmp_path))
    assert len(entries) == 200
    assert entries[0].name == "file_000.txt"
    assert entries[-1].name == "file_199.txt"


def test_safe_path_resolves_inside(list_root):
    assert safe_path(list_root, "src") == os.path.realpath(os.path.join(list_root, "src"))
    assert safe_path(list_root, "") == os.path.realpath(list_root)


def test_absolute_rel_path_stays_under_cwd(list_root):
    assert safe_path(list_root, "/src") == os.path.realpath(os.path.join(list_root, "src"))


def test_entry_json_keys(list_root):
    assert to_json_value(list_dir(list_root, "src")[0]) == {
        "name": "main.go",
        "path": os.path.join("src", "main.go"),
        "isDir": False,
    }


def test_search_match_file_name(search_root):
    results = search(search_root, "helper")
    assert results == [FsSearchResult(path=os.path.join("src", "util", "helper.go"), is_dir=False)]


def test_search_match_directory_name(search_root):
    paths = [r.path for r in search(search_root, "model")]
    assert os.path.join("src", "models") in paths


def test_search_case_insensitive(search_root):
    paths = [r.path for r in search(search_root, "makefile")]
    assert "Makefile" in paths


def test_search_sorts_dirs_first_then_short_paths(search_root):
    results = search(search_root, "main")
    assert len(results) >= 3
    assert results[0].is_dir
    files = [r for r in results if not r.is_dir]
    assert len(files) >= 2
    assert len(files[0].path) <= len(files[1].path)
    assert files[0].path == "main.go"


def test_search_skips_git_directory(search_root):
    git = os.path.join(search_root, ".git")
    os.mkdir(git)
    with open(os.path.join(git, "helper-config"), "w") as fh:
        fh.write("x")
    assert [r.path for r in search(search_root, "helper")] == [
        os.path.join("src", "util", "helper.go")
    ]


def test_search_max_50_results(tmp_path):
    for i in range(100):
        (tmp_path / f"test_{i:03d}.go").write_text("x")
    assert len(search(str(tmp_path), "test")) == 50


def test_search_result_json_keys():
    assert to_json_value(FsSearchResult(path="a", is_dir=True)) == {"path": "a", "isDir": True}