"""Unit tests for source configuration stores."""

import os
from unittest.mock import patch

import pytest
import yaml

from pricescout.errors import SourceStoreError
from pricescout.storage.source_store import InMemorySourceStore, YamlSourceStore
from tests.fixtures.sample_data import card_profile, card_record


def write_sources(path, records):
    path.write_text(yaml.safe_dump({"sources": records}))
    return path


class TestYamlSourceStore:

    @pytest.mark.asyncio
    async def test_loads_active_sources(self, tmp_path):
        inactive = card_record("shop-c", "https://shop-c.example")
        inactive["isActive"] = False
        path = write_sources(tmp_path / "sources.yaml", [
            card_record("shop-a", "https://shop-a.example"),
            card_record("shop-b", "https://shop-b.example"),
            inactive,
        ])

        sources = await YamlSourceStore(path).list_active_sources()

        assert [s.id for s in sources] == ["shop-a", "shop-b"]
        assert all(s.is_configured for s in sources)

    @pytest.mark.asyncio
    async def test_misconfigured_source_is_kept_with_error(self, tmp_path):
        broken = card_record("shop-x", "https://shop-x.example")
        broken["configuration"]["searchUrlTemplate"] = "https://shop-x.example/search"
        path = write_sources(tmp_path / "sources.yaml", [broken])

        sources = await YamlSourceStore(path).list_active_sources()

        assert len(sources) == 1
        assert not sources[0].is_configured

    @pytest.mark.asyncio
    async def test_record_without_identity_is_skipped(self, tmp_path):
        anonymous = card_record("shop-x")
        del anonymous["id"]
        path = write_sources(tmp_path / "sources.yaml", [anonymous, card_record("shop-a")])

        sources = await YamlSourceStore(path).list_active_sources()

        assert [s.id for s in sources] == ["shop-a"]

    @pytest.mark.asyncio
    async def test_find_source(self, tmp_path):
        path = write_sources(tmp_path / "sources.yaml", [card_record("shop-a")])
        store = YamlSourceStore(path)

        assert (await store.find_source("shop-a")).name == "Shop A"
        assert await store.find_source("missing") is None

    @pytest.mark.asyncio
    async def test_unchanged_file_is_parsed_once(self, tmp_path):
        path = write_sources(tmp_path / "sources.yaml", [card_record("shop-a")])
        store = YamlSourceStore(path)

        with patch("pricescout.storage.source_store.yaml.safe_load", wraps=yaml.safe_load) as safe_load:
            await store.list_active_sources()
            await store.list_active_sources()
            await store.find_source("shop-a")

        assert safe_load.call_count == 1

    @pytest.mark.asyncio
    async def test_edited_file_is_reloaded(self, tmp_path):
        path = write_sources(tmp_path / "sources.yaml", [card_record("shop-a")])
        store = YamlSourceStore(path)
        assert [s.id for s in await store.list_active_sources()] == ["shop-a"]

        write_sources(path, [card_record("shop-a"), card_record("shop-b", "https://shop-b.example")])
        stat = path.stat()
        os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))

        assert [s.id for s in await store.list_active_sources()] == ["shop-a", "shop-b"]

    @pytest.mark.asyncio
    async def test_missing_file_raises(self, tmp_path):
        store = YamlSourceStore(tmp_path / "absent.yaml")

        with pytest.raises(SourceStoreError):
            await store.list_active_sources()

    @pytest.mark.asyncio
    async def test_malformed_yaml_raises(self, tmp_path):
        path = tmp_path / "sources.yaml"
        path.write_text("sources: [unclosed\n")

        with pytest.raises(SourceStoreError):
            await YamlSourceStore(path).list_active_sources()

    @pytest.mark.asyncio
    async def test_empty_file_has_no_sources(self, tmp_path):
        path = tmp_path / "sources.yaml"
        path.write_text("")

        assert await YamlSourceStore(path).list_active_sources() == []


class TestInMemorySourceStore:

    @pytest.mark.asyncio
    async def test_filters_inactive(self):
        inactive = card_profile("shop-b").model_copy(update={"is_active": False})
        store = InMemorySourceStore([card_profile("shop-a"), inactive])

        assert [s.id for s in await store.list_active_sources()] == ["shop-a"]
        assert await store.find_source("shop-b") is inactive
