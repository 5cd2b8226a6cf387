"""
Integration tests for the archive pipeline
==========================================

End-to-end tests running real files through ArchivePipeline: compress,
decompress, list, inferred operations, conflicts and failure isolation.
"""

import bz2
import dataclasses
import gzip
import os

import pytest

from archive_configs import ArchiveConfig, ConfigPresets
from archive_errors import AmbiguousOutput, CodecError, ConflictAborted, UnrecognizedFormat
from archive_pipeline import ArchivePipeline, compress, decompress
from base_classes import ConflictDecision, JobStatus


def with_conflict(config, decision):
    return dataclasses.replace(config, conflict_default=decision)


@pytest.fixture
def pipeline(skip_config):
    return ArchivePipeline(skip_config)


class TestRoundTrips:
    """Compress then decompress through every writable chain"""

    @pytest.mark.parametrize("name", [
        "backup.tar", "backup.tar.gz", "backup.tgz", "backup.tar.bz2", "backup.tar.xz",
        "backup.tar.lz4", "backup.tar.zst", "backup.tar.sz", "backup.tar.gz.xz",
        "backup.zip", "backup.zip.zst", "backup.7z", "backup.7z.gz",
    ])
    def test_directory_round_trip(self, pipeline, sample_tree, temp_dir, snapshot, name):
        archive = temp_dir / name
        summary = pipeline.compress([sample_tree], archive)
        assert summary.success
        assert archive.is_file()

        out = temp_dir / "restored"
        summary = pipeline.decompress([archive], out)
        assert summary.success, summary.failures

        (result,) = summary.results
        assert result.destination == out / "backup"
        assert snapshot(out / "backup" / "project") == snapshot(sample_tree)

    @pytest.mark.parametrize("name", ["notes.txt.gz", "notes.txt.bz2", "notes.txt.xz",
                                      "notes.txt.lz4", "notes.txt.zst", "notes.txt.sz",
                                      "notes.txt.gz.zst"])
    def test_single_file_round_trip(self, pipeline, temp_dir, name):
        source = temp_dir / "notes.txt"
        source.write_bytes(b"line of notes\n" * 1000)
        archive = temp_dir / name
        assert pipeline.compress([source], archive).success

        out = temp_dir / "out"
        summary = pipeline.decompress([archive], out)
        assert summary.success
        assert (out / "notes.txt").read_bytes() == source.read_bytes()

    def test_several_inputs_into_one_archive(self, pipeline, sample_tree, temp_dir):
        extra = temp_dir / "extra.txt"
        extra.write_text("extra")
        archive = temp_dir / "all.zip"
        summary = pipeline.compress([sample_tree, extra], archive)
        assert summary.results[0].entries_written == 10

        listing = pipeline.list_archives([archive]).results[0].listing
        assert [m.relative_path.rstrip('/') for m in listing][-1] == "extra.txt"

    def test_module_level_helpers(self, sample_tree, temp_dir, skip_config):
        archive = temp_dir / "helper.tar.zst"
        assert compress([sample_tree], archive, skip_config).success
        assert decompress([archive], temp_dir / "out", skip_config).success
        assert (temp_dir / "out" / "helper" / "project" / "src" / "main.py").exists()

    def test_presets_change_size_not_content(self, sample_tree, temp_dir):
        fast = ArchivePipeline(ConfigPresets.fast())
        small = ArchivePipeline(ConfigPresets.smallest())
        assert fast.compress([sample_tree], temp_dir / "a.tar.gz").success
        assert small.compress([sample_tree], temp_dir / "b.tar.gz").success

        assert (temp_dir / "b.tar.gz").stat().st_size <= (temp_dir / "a.tar.gz").stat().st_size
        with gzip.open(temp_dir / "a.tar.gz") as a, gzip.open(temp_dir / "b.tar.gz") as b:
            assert a.read() == b.read()


class TestEntryOrder:
    """Archive entry order follows the walk, not worker timing"""

    def test_deterministic_listing(self, sample_tree, temp_dir):
        listings = []
        for workers in (1, 4):
            config = ArchiveConfig(num_workers=workers)
            archive = temp_dir / f"order{workers}.tar"
            ArchivePipeline(config).compress([sample_tree], archive)
            listing = ArchivePipeline(config).list_archives([archive]).results[0].listing
            listings.append([m.relative_path.rstrip('/') for m in listing])

        assert listings[0] == listings[1]
        assert listings[0][:3] == ["project", "project/data.bin", "project/docs"]


class TestFailureIsolation:
    """One bad input never affects the others"""

    def test_corrupt_input_among_valid(self, pipeline, sample_tree, temp_dir):
        valid = temp_dir / "valid.tar.gz"
        valid2 = temp_dir / "valid2.zip"
        corrupt = temp_dir / "corrupt.tar.gz"
        pipeline.compress([sample_tree], valid)
        pipeline.compress([sample_tree], valid2)
        corrupt.write_bytes(b"\x1f\x8b but not really gzip" * 50)

        out = temp_dir / "out"
        summary = pipeline.decompress([valid, corrupt, valid2], out)

        assert summary.succeeded == 2
        assert summary.failed == 1
        assert summary.exit_code == 1
        (failure,) = summary.failures
        assert failure.source == corrupt
        assert isinstance(failure.error, CodecError)
        assert failure.offending_path == corrupt
        assert (out / "valid" / "project" / "data.bin").exists()
        assert (out / "valid2" / "project" / "data.bin").exists()

    def test_unrecognized_input_fails_its_job(self, pipeline, temp_dir):
        plain = temp_dir / "notes.txt"
        plain.write_text("hi")
        (result,) = pipeline.decompress([plain], temp_dir / "out").results
        assert result.failed
        assert isinstance(result.error, UnrecognizedFormat)

    def test_misordered_chain_fails_its_job(self, pipeline, sample_tree, temp_dir):
        pipeline.compress([sample_tree], temp_dir / "x.tar")
        misordered = temp_dir / "x.gz.tar"
        os.rename(temp_dir / "x.tar", misordered)

        (result,) = pipeline.decompress([misordered], temp_dir / "out").results
        assert result.failed
        assert isinstance(result.error, UnrecognizedFormat)
        assert "innermost" in str(result.error)
        assert not (temp_dir / "out" / "x").exists()

        (listed,) = pipeline.list_archives([misordered]).results
        assert isinstance(listed.error, UnrecognizedFormat)

    def test_missing_input(self, pipeline, temp_dir):
        (result,) = pipeline.decompress([temp_dir / "missing.gz"], temp_dir / "out").results
        assert result.failed

    def test_cancelled_before_start(self, pipeline, sample_tree, temp_dir):
        archive = temp_dir / "a.tar"
        pipeline.compress([sample_tree], archive)
        pipeline.cancel()
        summary = pipeline.decompress([archive, archive], temp_dir / "out")
        assert summary.cancelled == 2
        assert not summary.success
        assert not (temp_dir / "out" / "a").exists()


class TestDirectoryInputs:
    """Decompressing a directory of compressed files"""

    def test_directory_decompress(self, pipeline, temp_dir):
        inbox = temp_dir / "inbox"
        (inbox / "nested").mkdir(parents=True)
        (inbox / "readme.md").write_text("not compressed")
        with gzip.open(inbox / "a.txt.gz", 'wb') as f:
            f.write(b"alpha")
        with gzip.open(inbox / "nested" / "b.txt.gz", 'wb') as f:
            f.write(b"beta")

        out = temp_dir / "out"
        summary = pipeline.decompress([inbox], out)

        assert summary.success
        assert summary.results[0].entries_written == 2
        assert (out / "inbox" / "a.txt").read_bytes() == b"alpha"
        assert (out / "inbox" / "nested" / "b.txt").read_bytes() == b"beta"
        assert not (out / "inbox" / "readme.md").exists()

    def test_destination_inside_input(self, pipeline, temp_dir):
        """The output directory is never read back as input"""
        inbox = temp_dir / "inbox"
        inbox.mkdir()
        with gzip.open(inbox / "a.txt.gz", 'wb') as f:
            f.write(b"alpha")
        out = inbox / "out"

        summary = pipeline.decompress([inbox], out)
        assert summary.success
        assert (out / "inbox" / "a.txt").read_bytes() == b"alpha"

        # Running again must not pick up what the first run produced
        summary = pipeline.decompress([inbox], out)
        assert summary.success
        assert not (out / "inbox" / "out").exists()

    def test_decompress_directory_into_itself(self, pipeline, temp_dir, monkeypatch):
        """Decompressing the working directory into itself still finds its archives"""
        inbox = temp_dir / "inbox"
        inbox.mkdir()
        with gzip.open(inbox / "a.txt.gz", 'wb') as f:
            f.write(b"alpha")
        monkeypatch.chdir(inbox)

        summary = pipeline.decompress(["."])

        assert summary.success
        assert summary.results[0].entries_written == 1
        assert (inbox / "inbox" / "a.txt").read_bytes() == b"alpha"

    def test_archive_inside_compressed_directory(self, pipeline, sample_tree):
        """Compressing a directory into itself does not include the output"""
        archive = sample_tree / "self.tar"
        assert pipeline.compress([sample_tree], archive).success
        listing = pipeline.list_archives([archive]).results[0].listing
        assert "project/self.tar" not in [m.relative_path for m in listing]


class TestConflicts:
    """Existing destinations"""

    def test_skip_keeps_existing(self, pipeline, temp_dir):
        source = temp_dir / "a.txt"
        source.write_text("new content")
        archive = temp_dir / "a.txt.gz"
        pipeline.compress([source], archive)
        out = temp_dir / "out"
        out.mkdir()
        (out / "a.txt").write_text("old")

        (result,) = pipeline.decompress([archive], out).results
        assert result.status is JobStatus.SKIPPED
        assert (out / "a.txt").read_text() == "old"

    def test_overwrite(self, skip_config, temp_dir):
        source = temp_dir / "a.txt"
        source.write_text("new content")
        archive = temp_dir / "a.txt.gz"
        pipeline = ArchivePipeline(with_conflict(skip_config, ConflictDecision.OVERWRITE))
        pipeline.compress([source], archive)
        (temp_dir / "out").mkdir()
        (temp_dir / "out" / "a.txt").write_text("old")

        assert pipeline.decompress([archive], temp_dir / "out").success
        assert (temp_dir / "out" / "a.txt").read_text() == "new content"

    def test_rename(self, skip_config, sample_tree, temp_dir):
        pipeline = ArchivePipeline(with_conflict(skip_config, ConflictDecision.RENAME))
        archive = temp_dir / "p.tar.gz"
        pipeline.compress([sample_tree], archive)
        pipeline.compress([sample_tree], archive)
        assert (temp_dir / "p_1.tar.gz").is_file()

        out = temp_dir / "out"
        pipeline.decompress([archive], out)
        summary = pipeline.decompress([archive], out)
        assert summary.results[0].destination == out / "p_1"
        assert (out / "p_1" / "project" / "data.bin").exists()

    def test_abort_fails_job(self, skip_config, temp_dir):
        pipeline = ArchivePipeline(with_conflict(skip_config, ConflictDecision.ABORT))
        source = temp_dir / "a.txt"
        source.write_text("x")
        archive = temp_dir / "a.txt.gz"
        archive.write_bytes(b"existing")

        (result,) = pipeline.compress([source], archive).results
        assert result.failed
        assert isinstance(result.error, ConflictAborted)
        assert archive.read_bytes() == b"existing"

    def test_same_destination_from_two_jobs(self, skip_config, temp_dir):
        """Concurrent jobs writing the same new path conflict with each other"""
        with gzip.open(temp_dir / "a.txt.gz", 'wb') as f:
            f.write(b"from gzip")
        with bz2.open(temp_dir / "a.txt.bz2", 'wb') as f:
            f.write(b"from bzip2")
        pipeline = ArchivePipeline(with_conflict(skip_config, ConflictDecision.ABORT))
        out = temp_dir / "out"

        summary = pipeline.decompress([temp_dir / "a.txt.gz", temp_dir / "a.txt.bz2"], out)

        assert summary.succeeded == 1
        assert summary.failed == 1
        (failed,) = [r for r in summary.results if r.failed]
        assert isinstance(failed.error, ConflictAborted)
        assert (out / "a.txt").read_bytes() in (b"from gzip", b"from bzip2")

    def test_overwrite_all_asked_once(self, temp_dir):
        """Overwrite-all from the prompt holds for every later conflict"""
        asked = []

        def prompt(path):
            asked.append(path)
            return ConflictDecision.OVERWRITE_ALL

        pipeline = ArchivePipeline(ArchiveConfig(num_workers=2, interactive=True), prompt=prompt)
        archives = []
        for name in ("a", "b", "c"):
            source = temp_dir / f"{name}.txt"
            source.write_text(name * 10)
            archive = temp_dir / f"{name}.txt.zst"
            pipeline.compress([source], archive)
            archives.append(archive)

        out = temp_dir / "out"
        out.mkdir()
        for name in ("a", "b", "c"):
            (out / f"{name}.txt").write_text("old")

        assert pipeline.decompress(archives, out).success
        assert len(asked) == 1
        assert (out / "c.txt").read_text() == "c" * 10

    def test_overwrite_existing_archive_directory(self, skip_config, sample_tree, temp_dir):
        """Overwriting a container destination replaces the old tree"""
        pipeline = ArchivePipeline(with_conflict(skip_config, ConflictDecision.OVERWRITE))
        archive = temp_dir / "p.zip"
        pipeline.compress([sample_tree], archive)
        stale = temp_dir / "out" / "p" / "stale.txt"
        stale.parent.mkdir(parents=True)
        stale.write_text("stale")

        assert pipeline.decompress([archive], temp_dir / "out").success
        assert not stale.exists()
        assert (temp_dir / "out" / "p" / "project" / "data.bin").exists()


class TestInference:
    """run() works out the operation"""

    def test_output_with_chain_compresses(self, pipeline, sample_tree, temp_dir):
        summary = pipeline.run([sample_tree], temp_dir / "x.tar.xz")
        assert summary.success
        assert (temp_dir / "x.tar.xz").is_file()

    def test_plain_output_decompresses(self, pipeline, sample_tree, temp_dir):
        pipeline.compress([sample_tree], temp_dir / "x.tar")
        summary = pipeline.run([temp_dir / "x.tar"], temp_dir / "out")
        assert summary.success
        assert (temp_dir / "out" / "x" / "project").is_dir()

    def test_no_output_decompresses_here(self, pipeline, sample_tree, temp_dir, monkeypatch):
        pipeline.compress([sample_tree], temp_dir / "x.zip")
        work = temp_dir / "work"
        work.mkdir()
        monkeypatch.chdir(work)
        assert pipeline.run([temp_dir / "x.zip"]).success
        assert (work / "x" / "project").is_dir()

    def test_ambiguous(self, pipeline, sample_tree, temp_dir):
        with pytest.raises(AmbiguousOutput):
            pipeline.run([sample_tree], temp_dir / "out")

    def test_stream_chain_with_several_inputs(self, pipeline, temp_dir):
        a = temp_dir / "a.txt"
        b = temp_dir / "b.txt"
        a.write_text("a")
        b.write_text("b")
        with pytest.raises(AmbiguousOutput):
            pipeline.compress([a, b], temp_dir / "both.gz")

    def test_stream_chain_with_directory(self, pipeline, sample_tree, temp_dir):
        with pytest.raises(AmbiguousOutput):
            pipeline.compress([sample_tree], temp_dir / "dir.gz")

    def test_unwritable_chain(self, pipeline, sample_tree, temp_dir):
        with pytest.raises(UnrecognizedFormat):
            pipeline.compress([sample_tree], temp_dir / "x.rar")
        with pytest.raises(UnrecognizedFormat):
            pipeline.compress([sample_tree], temp_dir / "x.unknown")

    def test_container_outside_stream_layer(self, pipeline, sample_tree, temp_dir):
        """A container must be the innermost layer of an output name"""
        for name in ("out.gz.tar", "out.tar.zip"):
            with pytest.raises(UnrecognizedFormat):
                pipeline.compress([sample_tree], temp_dir / name)
            assert not (temp_dir / name).exists()


class TestListing:
    """list_archives()"""

    def test_listing_with_metadata(self, pipeline, sample_tree, temp_dir):
        os.utime(sample_tree / "data.bin", (1_600_000_000, 1_600_000_000))
        pipeline.compress([sample_tree], temp_dir / "x.tar.gz")

        (result,) = pipeline.list_archives([temp_dir / "x.tar.gz"]).results
        members = {m.relative_path.rstrip('/'): m for m in result.listing}
        assert members["project/data.bin"].metadata.mtime == 1_600_000_000
        assert members["project/data.bin"].metadata.size == 16384
        assert members["project/empty"].is_dir
        # Listing extracts nothing
        assert sorted(os.listdir(temp_dir)) == ["project", "x.tar.gz"]

    def test_stream_only_not_listable(self, pipeline, temp_dir):
        source = temp_dir / "a.txt"
        source.write_text("a")
        pipeline.compress([source], temp_dir / "a.txt.gz")
        (result,) = pipeline.list_archives([temp_dir / "a.txt.gz"]).results
        assert result.failed
        assert isinstance(result.error, UnrecognizedFormat)
