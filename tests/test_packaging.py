"""Test package preparation"""

import json
import random

import pytest

from chunkship.config import ChunkingConfig, PackagingFilters
from chunkship.manifest.model import BuildType, ChunkManifest, load_manifest
from chunkship.packaging.pipeline import (
    PackageOptions,
    PackagingError,
    generate_manifest,
    manifest_filename,
    should_include_file
)
from chunkship.storage.chunk_store import ChunkStore

SMALL = ChunkingConfig(min_size=256, avg_size=1024, max_size=4096)


class TestShouldIncludeFile:
    """Test packaging filters"""

    def test_default_exclusions(self):
        assert should_include_file('Game/Binaries/game.exe')
        assert not should_include_file('Game/Binaries/game.pdb')
        assert not should_include_file('Game/Saved/Logs/run.log')
        assert not should_include_file('Game\\Saved\\Config\\user.ini')
        assert not should_include_file('manifest_production_1.0.json')
        assert not should_include_file('version.json')
        assert not should_include_file('sub/roleplayai_launcher.exe')

    def test_optional_filters_can_be_disabled(self):
        filters = PackagingFilters(exclude_pdb=False, exclude_saved=False)

        assert should_include_file('Game/Binaries/game.pdb', filters)
        assert should_include_file('Game/Saved/Logs/run.log', filters)
        assert not should_include_file('roleplayai.txt', filters)

    def test_saved_matches_whole_segment(self):
        assert should_include_file('Game/SavedGames/slot.dat')


class TestGenerateManifest:
    """Test end-to-end packaging"""

    @pytest.mark.asyncio
    async def test_package_build_directory(self, temp_dir):
        source = temp_dir / 'Build'
        (source / 'Game' / 'Binaries').mkdir(parents=True)
        (source / 'Game' / 'Saved').mkdir(parents=True)

        shared = random.Random(3).randbytes(20_000)
        (source / 'Game' / 'Binaries' / 'game.exe').write_bytes(shared)
        (source / 'Game' / 'Binaries' / 'copy.exe').write_bytes(shared)
        (source / 'Game' / 'Binaries' / 'game.pdb').write_bytes(b'symbols')
        (source / 'Game' / 'Saved' / 'save.sav').write_bytes(b'save')
        (source / 'readme.txt').write_bytes(b'')

        events = []
        result = await generate_manifest(PackageOptions(
            source_dir=source,
            output_dir=temp_dir / 'out',
            version='1.2.3',
            build_type=BuildType.STAGING,
            chunking=SMALL
        ), on_progress=events.append)

        names = [f.filename for f in result.manifest.files]
        assert names == ['Game/Binaries/copy.exe', 'Game/Binaries/game.exe', 'readme.txt']
        assert result.manifest_path.name == manifest_filename(BuildType.STAGING, '1.2.3')
        assert json.loads(result.version_path.read_text()) == {'version': '1.2.3'}

        # Identical files share every chunk
        copy, game, empty = result.manifest.files
        assert copy.chunk_hashes == game.chunk_hashes
        assert empty.chunks == [] and empty.total_size == 0
        assert result.stats.unique_chunks == len(game.chunks)
        assert result.stats.total_chunks == 2 * len(game.chunks)

        store = ChunkStore(result.chunks_dir)
        assert sorted(store.list_hashes()) == sorted(set(game.chunk_hashes))
        reassembled = temp_dir / 'game.exe'
        await store.reconstruct(game.chunks, reassembled)
        assert reassembled.read_bytes() == shared

        loaded = await load_manifest(result.manifest_path)
        assert isinstance(loaded, ChunkManifest)
        assert loaded.build_type is BuildType.STAGING
        assert events[-1].percentage == 100.0

    @pytest.mark.asyncio
    async def test_output_inside_source_is_skipped(self, temp_dir):
        source = temp_dir / 'Build'
        source.mkdir()
        (source / 'a.bin').write_bytes(b'a' * 1000)

        options = PackageOptions(source, source / 'out', '1.0', chunking=SMALL)
        await generate_manifest(options)
        result = await generate_manifest(options)

        assert [f.filename for f in result.manifest.files] == ['a.bin']

    @pytest.mark.asyncio
    async def test_missing_version(self, temp_dir):
        with pytest.raises(PackagingError):
            await generate_manifest(PackageOptions(temp_dir, temp_dir / 'out', ''))

    @pytest.mark.asyncio
    async def test_missing_source(self, temp_dir):
        with pytest.raises(PackagingError):
            await generate_manifest(PackageOptions(temp_dir / 'nope', temp_dir / 'out', '1.0'))

    @pytest.mark.asyncio
    async def test_nothing_to_package(self, temp_dir):
        source = temp_dir / 'Build'
        source.mkdir()
        (source / 'only.pdb').write_bytes(b'x')

        with pytest.raises(PackagingError):
            await generate_manifest(PackageOptions(source, temp_dir / 'out', '1.0', chunking=SMALL))
