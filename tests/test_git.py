import asyncio
from pathlib import Path

import pytest

from conftest import run_git
from prassist.errors import DirtyWorktreeError
from prassist.git import GitCommandError, GitRepository


def test_discover_finds_root_from_subdirectory(git_repo: Path) -> None:
    nested = git_repo / "pkg" / "sub"
    nested.mkdir(parents=True)

    repo = asyncio.run(GitRepository.discover(nested))

    assert repo.root == git_repo.resolve()


def test_state_dir_does_not_make_tree_dirty(git_repo: Path) -> None:
    repo = GitRepository(git_repo, ignored_dirty_paths=[".prassist/", "prassist.toml"])
    (git_repo / ".prassist" / "runs").mkdir(parents=True)
    (git_repo / ".prassist" / "runs" / "run-1.jsonl").write_text("{}\n", encoding="utf-8")
    (git_repo / "prassist.toml").write_text("[backend]\n", encoding="utf-8")

    assert asyncio.run(repo.dirty_paths()) == []
    asyncio.run(repo.ensure_clean())


def test_dirty_tree_lists_offending_paths(git_repo: Path) -> None:
    (git_repo / "README.md").write_text("changed\n", encoding="utf-8")
    (git_repo / "new.txt").write_text("new\n", encoding="utf-8")
    repo = GitRepository(git_repo)

    with pytest.raises(DirtyWorktreeError) as excinfo:
        asyncio.run(repo.ensure_clean())

    assert sorted(excinfo.value.dirty_paths) == ["README.md", "new.txt"]


def test_stage_all_skips_ignored_paths(git_repo: Path) -> None:
    repo = GitRepository(git_repo, ignored_dirty_paths=[".prassist/", "prassist.toml"])
    (git_repo / ".prassist").mkdir()
    (git_repo / ".prassist" / "step-1.patch").write_text("x\n", encoding="utf-8")
    (git_repo / "prassist.toml").write_text("[backend]\n", encoding="utf-8")
    (git_repo / "feature.py").write_text("VALUE = 1\n", encoding="utf-8")

    async def _stage() -> tuple[bool, str]:
        await repo.stage_all()
        return await repo.has_staged_changes(), await repo.diff_summary()

    staged, summary = asyncio.run(_stage())

    assert staged is True
    assert run_git(git_repo, "diff", "--cached", "--name-only").split() == ["feature.py"]
    assert summary.startswith("- feature.py\n")
    assert "1 file changed" in summary


def test_nothing_staged_after_clean_stage(git_repo: Path) -> None:
    repo = GitRepository(git_repo)

    async def _stage() -> bool:
        await repo.stage_all()
        return await repo.has_staged_changes()

    assert asyncio.run(_stage()) is False


def test_branch_and_commit(git_repo: Path) -> None:
    repo = GitRepository(git_repo)
    (git_repo / "README.md").write_text("seed\nmore\n", encoding="utf-8")

    async def _commit() -> str:
        await repo.create_branch("llm/pr-20240101-000000")
        await repo.stage_all()
        await repo.commit("LLM: more")
        return await repo.current_branch()

    assert asyncio.run(_commit()) == "llm/pr-20240101-000000"
    assert run_git(git_repo, "log", "-1", "--pretty=%s").strip() == "LLM: more"


def test_base_branch_follows_origin_head(tmp_path: Path, git_repo: Path) -> None:
    repo = GitRepository(git_repo)
    assert asyncio.run(repo.detect_base_branch()) is None
    assert asyncio.run(repo.origin_url()) is None

    origin = tmp_path / "origin.git"
    run_git(tmp_path, "init", "--bare", str(origin))
    run_git(git_repo, "remote", "add", "origin", str(origin))
    run_git(git_repo, "push", "origin", "main:develop")
    run_git(git_repo, "fetch", "origin")
    run_git(git_repo, "symbolic-ref", "refs/remotes/origin/HEAD", "refs/remotes/origin/develop")

    assert asyncio.run(repo.detect_base_branch()) == "develop"
    assert asyncio.run(repo.origin_url()) == str(origin)


def test_failed_command_raises_with_stderr(git_repo: Path) -> None:
    repo = GitRepository(git_repo)

    with pytest.raises(GitCommandError) as excinfo:
        asyncio.run(repo.run(["checkout", "does-not-exist"]))

    assert excinfo.value.returncode != 0
    assert str(excinfo.value).startswith("Git command failed: git checkout does-not-exist")


def test_worktree_files_include_untracked_but_not_state(git_repo: Path) -> None:
    repo = GitRepository(git_repo)
    (git_repo / "fresh.py").write_text("x = 1\n", encoding="utf-8")
    (git_repo / ".prassist").mkdir()
    (git_repo / ".prassist" / "a.patch").write_text("x\n", encoding="utf-8")

    assert sorted(asyncio.run(repo.list_worktree_files())) == ["README.md", "fresh.py"]
    assert asyncio.run(repo.list_tracked_files()) == ["README.md"]
