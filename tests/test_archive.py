"""Tests for the lazy single-file archive builder."""

import io
import tarfile

import pytest

from buildbox.archive import build_archive


def read_archive(chunks) -> tarfile.TarFile:
    return tarfile.open(fileobj=io.BytesIO(b"".join(chunks)), mode="r:")


class TestBuildArchive:

    def test_single_entry_named_after_basename(self, tmp_path):
        script = tmp_path / "nested" / "build.sh"
        script.parent.mkdir()
        script.write_text("echo hello\n")

        with read_archive(build_archive(script)) as tar:
            assert tar.getnames() == ["build.sh"]
            member = tar.getmember("build.sh")
            assert member.isfile()
            assert tar.extractfile(member).read() == b"echo hello\n"

    def test_entry_is_portable(self, tmp_path):
        script = tmp_path / "build.sh"
        script.write_text("true\n")
        script.chmod(0o755)

        with read_archive(build_archive(script)) as tar:
            member = tar.getmember("build.sh")
            assert member.uid == 0
            assert member.gid == 0
            assert member.uname == ""
            assert member.gname == ""
            assert member.mode == 0o755

    def test_uncompressed_and_record_aligned(self, tmp_path):
        script = tmp_path / "build.sh"
        script.write_bytes(b"x" * 1234)

        data = b"".join(build_archive(script))

        assert not data.startswith(b"\x1f\x8b")
        assert len(data) % tarfile.RECORDSIZE == 0

    def test_large_file_is_streamed_in_chunks(self, tmp_path):
        payload = bytes(range(256)) * 1024
        big = tmp_path / "blob.bin"
        big.write_bytes(payload)

        chunks = list(build_archive(big, chunk_size=64 * 1024))

        # header, four data chunks, padding
        assert len(chunks) == 6
        with read_archive(chunks) as tar:
            assert tar.extractfile("blob.bin").read() == payload

    def test_long_file_name(self, tmp_path):
        name = "a" * 150 + ".sh"
        script = tmp_path / name
        script.write_text("true\n")

        with read_archive(build_archive(script)) as tar:
            assert tar.getnames() == [name]

    def test_missing_file_fails_immediately(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            build_archive(tmp_path / "missing.sh")

    def test_directory_is_rejected(self, tmp_path):
        with pytest.raises(IsADirectoryError):
            build_archive(tmp_path)

    def test_file_is_read_lazily(self, tmp_path):
        script = tmp_path / "build.sh"
        script.write_text("first\n")

        archive = build_archive(script)
        script.write_text("later\n")

        # Size was captured up front, contents are read on iteration
        with read_archive(archive) as tar:
            assert tar.extractfile("build.sh").read() == b"later\n"
