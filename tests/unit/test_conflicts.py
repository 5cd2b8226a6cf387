"""
Unit tests for destination conflict resolution
==============================================

Tests for pipeline/stages/conflicts.py including:
- Rename naming and uniqueness
- Sticky overwrite-all across workers
- Non-interactive defaults
"""

import logging
import threading
from pathlib import Path
from unittest.mock import Mock

import pytest

from archive_configs import ArchiveConfig
from archive_errors import ConflictAborted
from base_classes import ConflictDecision
from pipeline.stages.conflicts import (ConflictPolicy, ConflictResolver, Resolution,
                                       renamed_path)


class CountingPrompt:
    """Prompt stub returning queued answers and counting calls"""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.calls = []

    def __call__(self, path):
        self.calls.append(path)
        return self.answers.pop(0)


class TestRenamedPath:
    """Test the name_N naming scheme"""

    def test_compound_suffix(self):
        assert renamed_path(Path("out/archive.tar.gz"), 1) == Path("out/archive_1.tar.gz")

    def test_no_suffix(self):
        assert renamed_path(Path("folder"), 3) == Path("folder_3")

    def test_leading_dot(self):
        assert renamed_path(Path(".config.json"), 2) == Path(".config_2.json")
        assert renamed_path(Path(".bashrc"), 1) == Path(".bashrc_1")


class TestConflictResolver:
    """Test ConflictResolver decisions"""

    def test_free_path(self, temp_dir):
        resolver = ConflictResolver(ConflictPolicy(default=ConflictDecision.ABORT))
        resolution = resolver.resolve(temp_dir / "new.txt")
        assert resolution == Resolution(temp_dir / "new.txt")
        assert not resolution.skip and not resolution.overwrite

    def test_skip(self, temp_dir):
        existing = temp_dir / "a.txt"
        existing.write_text("x")
        resolution = ConflictResolver(ConflictPolicy(default=ConflictDecision.SKIP)).resolve(existing)
        assert resolution.skip
        assert resolution.path == existing

    def test_overwrite(self, temp_dir):
        existing = temp_dir / "a.txt"
        existing.write_text("x")
        resolver = ConflictResolver(ConflictPolicy(default=ConflictDecision.OVERWRITE))
        assert resolver.resolve(existing).overwrite

    def test_abort(self, temp_dir):
        existing = temp_dir / "a.txt"
        existing.write_text("x")
        resolver = ConflictResolver(ConflictPolicy(default=ConflictDecision.ABORT))
        with pytest.raises(ConflictAborted) as exc_info:
            resolver.resolve(existing)
        assert exc_info.value.path == existing

    def test_rename_skips_taken_names(self, temp_dir):
        (temp_dir / "a.tar.gz").write_text("x")
        (temp_dir / "a_1.tar.gz").write_text("x")
        resolver = ConflictResolver(ConflictPolicy(default=ConflictDecision.RENAME))

        resolution = resolver.resolve(temp_dir / "a.tar.gz")
        assert resolution.path == temp_dir / "a_2.tar.gz"
        assert resolution.decision is ConflictDecision.RENAME

    def test_rename_claims_are_unique(self, temp_dir):
        """Two renames of the same path never get the same name"""
        (temp_dir / "a.txt").write_text("x")
        resolver = ConflictResolver(ConflictPolicy(default=ConflictDecision.RENAME))
        first = resolver.resolve(temp_dir / "a.txt").path
        second = resolver.resolve(temp_dir / "a.txt").path
        assert first != second
        assert {first.name, second.name} == {"a_1.txt", "a_2.txt"}

    def test_free_path_is_claimed(self, temp_dir):
        """A path handed out once is a conflict for the next caller"""
        resolver = ConflictResolver(ConflictPolicy(default=ConflictDecision.ABORT))
        assert resolver.resolve(temp_dir / "a.txt") == Resolution(temp_dir / "a.txt")
        with pytest.raises(ConflictAborted):
            resolver.resolve(temp_dir / "a.txt")

    def test_claimed_path_renamed(self, temp_dir):
        resolver = ConflictResolver(ConflictPolicy(default=ConflictDecision.RENAME))
        first = resolver.resolve(temp_dir / "a.txt")
        second = resolver.resolve(temp_dir / "a.txt")
        assert first.path == temp_dir / "a.txt"
        assert second.path == temp_dir / "a_1.txt"

    def test_concurrent_claims_of_free_path(self, temp_dir):
        """Exactly one of several threads gets a free path"""
        resolver = ConflictResolver(ConflictPolicy(default=ConflictDecision.SKIP))
        resolutions = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            resolutions.append(resolver.resolve(temp_dir / "out.txt"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(1 for r in resolutions if r.decision is None) == 1
        assert sum(1 for r in resolutions if r.skip) == 7

    def test_dangling_symlink_is_a_conflict(self, temp_dir):
        link = temp_dir / "link"
        link.symlink_to(temp_dir / "missing")
        resolver = ConflictResolver(ConflictPolicy(default=ConflictDecision.SKIP))
        assert resolver.resolve(link).skip


class TestConflictPolicy:
    """Test operation-wide conflict state"""

    def test_default_is_skip(self, temp_dir, caplog):
        policy = ConflictPolicy()
        with caplog.at_level(logging.WARNING):
            assert policy.decide(temp_dir / "a") is ConflictDecision.SKIP
            assert policy.decide(temp_dir / "b") is ConflictDecision.SKIP
        warnings = [r for r in caplog.records if "skipped" in r.message]
        assert len(warnings) == 1

    def test_overwrite_all_default_folded(self, temp_dir):
        policy = ConflictPolicy(default=ConflictDecision.OVERWRITE_ALL)
        assert policy.decide(temp_dir / "a") is ConflictDecision.OVERWRITE

    def test_overwrite_all_is_sticky(self, temp_dir):
        """After overwrite-all nobody is asked again"""
        prompt = CountingPrompt(ConflictDecision.OVERWRITE_ALL)
        policy = ConflictPolicy(prompt=prompt)

        assert policy.decide(temp_dir / "a") is ConflictDecision.OVERWRITE
        assert policy.overwrite_all
        assert policy.decide(temp_dir / "b") is ConflictDecision.OVERWRITE
        assert len(prompt.calls) == 1

    def test_overwrite_all_across_threads(self, temp_dir):
        prompt = CountingPrompt(ConflictDecision.OVERWRITE_ALL)
        policy = ConflictPolicy(prompt=prompt)
        decisions = []

        def worker(i):
            decisions.append(policy.decide(temp_dir / f"f{i}"))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert decisions == [ConflictDecision.OVERWRITE] * 8
        assert len(prompt.calls) == 1

    def test_prompt_answers_each_conflict(self, temp_dir):
        prompt = CountingPrompt(ConflictDecision.SKIP, ConflictDecision.OVERWRITE)
        policy = ConflictPolicy(prompt=prompt)
        assert policy.decide(temp_dir / "a") is ConflictDecision.SKIP
        assert policy.decide(temp_dir / "b") is ConflictDecision.OVERWRITE
        assert prompt.calls == [temp_dir / "a", temp_dir / "b"]

    def test_from_config_ignores_prompt_when_not_interactive(self):
        prompt = Mock(return_value=ConflictDecision.OVERWRITE)
        config = ArchiveConfig(conflict_default=ConflictDecision.RENAME)
        policy = ConflictPolicy.from_config(config, prompt)
        assert policy.prompt is None
        assert policy.default is ConflictDecision.RENAME
        assert policy.decide(Path("x")) is ConflictDecision.RENAME
        prompt.assert_not_called()

    def test_from_config_interactive(self):
        prompt = Mock(return_value=ConflictDecision.OVERWRITE)
        policy = ConflictPolicy.from_config(ArchiveConfig(interactive=True), prompt)
        assert policy.prompt is prompt
        assert policy.decide(Path("x")) is ConflictDecision.OVERWRITE
        prompt.assert_called_once_with(Path("x"))
