"""Test delta detection between manifest versions"""

import pytest

from chunkship.manifest.delta import (
    BuildTypeMismatchError,
    calculate_upload_size,
    detect_delta,
    files_to_upload,
    has_file_changed
)
from chunkship.manifest.model import (
    ChunkRef,
    FileEntry,
    ManifestTypeError,
    create_chunk_manifest,
    parse_manifest
)


def entry(name, *hashes, size=10):
    chunks = [ChunkRef(h, size, i * size) for i, h in enumerate(hashes)]
    return FileEntry(name, size * len(hashes), chunks)


def manifest(version, *files, build_type='production'):
    return create_chunk_manifest(version, build_type, list(files))


class TestDetectDelta:
    """Test file and chunk changesets"""

    def test_changed_new_and_deleted(self):
        """A=[h1,h2], B=[h3] -> A=[h1,h4], C=[h3]"""
        old = manifest('1.0', entry('A', 'h1', 'h2'), entry('B', 'h3'))
        new = manifest('1.1', entry('A', 'h1', 'h4'), entry('C', 'h3'))

        delta = detect_delta(old, new)

        assert [f.filename for f in delta.changed_files] == ['A']
        assert [f.filename for f in delta.new_files] == ['C']
        assert [f.filename for f in delta.deleted_files] == ['B']
        assert delta.chunks_to_upload == ['h4']
        assert delta.total_files == 2
        assert delta.total_chunks_in_new == 3

    def test_identical_manifests(self):
        old = manifest('1.0', entry('A', 'h1', 'h2'))
        new = manifest('1.1', entry('A', 'h1', 'h2'))

        delta = detect_delta(old, new)

        assert delta.chunks_to_upload == []
        assert delta.stats['changed_files_count'] == 0
        assert files_to_upload(delta) == []

    def test_dedup_across_new_files(self):
        """A chunk shared by two new files is uploaded once, in first-seen order"""
        old = manifest('1.0', entry('A', 'h1'))
        new = manifest('1.1', entry('A', 'h1'), entry('B', 'h5', 'h6'), entry('C', 'h6', 'h5', 'h7'))

        delta = detect_delta(old, new)

        assert delta.chunks_to_upload == ['h5', 'h6', 'h7']
        assert calculate_upload_size(delta) == 30

    def test_build_type_mismatch(self):
        old = manifest('1.0', entry('A', 'h1'), build_type='production')
        new = manifest('1.1', entry('A', 'h2'), build_type='staging')

        with pytest.raises(BuildTypeMismatchError):
            detect_delta(old, new)

    def test_legacy_manifest_rejected(self):
        legacy = parse_manifest({'version': '0.9', 'files': [{'path': 'A', 'url': 'u'}]})
        new = manifest('1.0', entry('A', 'h1'))

        with pytest.raises(ManifestTypeError):
            detect_delta(legacy, new)


class TestHasFileChanged:
    """Test per-file comparison"""

    def test_reordered_chunks_count_as_change(self):
        assert has_file_changed(entry('A', 'h1', 'h2'), entry('A', 'h2', 'h1'))

    def test_url_only_difference_is_not_a_change(self):
        old = entry('A', 'h1')
        new = entry('A', 'h1')
        new.chunks[0].url = 'production/1.1/chunks/h1/h1'

        assert not has_file_changed(old, new)

    def test_size_difference(self):
        assert has_file_changed(entry('A', 'h1', size=10), entry('A', 'h1', size=11))
