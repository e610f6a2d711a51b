"""Tests for the discovered items cache and its file."""

import json

import pytest
from asyncua import ua

from opcua_supervisor.address_space import AddressSpaceCache
from opcua_supervisor.errors import BusyError, CacheNotFoundError, CacheParseError
from opcua_supervisor.types import DiscoveredItem, ValueCategory

from conftest import BOOLEAN_TYPE, FLOAT_TYPE, INT32_TYPE, RECORD_TYPE, nid


def _item(name, value, data_type_id=INT32_TYPE, browse_name=None):
    return DiscoveredItem(
        node_id=nid(name),
        browse_name=browse_name or name,
        data_type_id=data_type_id,
        data_type="",
        value=value,
        category=ValueCategory.of(value),
    )


@pytest.fixture
def cache(cache_dir):
    return AddressSpaceCache(directory=cache_dir, filename="items.json")


class TestConstruction:
    """Tests for directory creation and fresh start."""

    def test_creates_directory(self, tmp_path):
        directory = tmp_path / "nested" / "cache"
        AddressSpaceCache(directory=directory)
        assert directory.is_dir()

    def test_deletes_previous_file(self, cache_dir):
        cache_dir.mkdir(parents=True)
        stale = cache_dir / "items.json"
        stale.write_text("[]", encoding="utf-8")

        cache = AddressSpaceCache(directory=cache_dir, filename="items.json")

        assert not stale.exists()
        assert len(cache) == 0


class TestUpsert:
    """Tests for keyed insertion and lookup."""

    def test_append_then_update_in_place(self, cache):
        assert cache.upsert(_item("A", 1)) is True
        assert cache.upsert(_item("B", 2)) is True
        assert cache.upsert(_item("A", 10)) is False

        assert len(cache) == 2
        assert cache.find_index(nid("A")) == 0
        assert cache.find(nid("A")).value == 10
        assert [item.node_id for item in cache.items] == [nid("A"), nid("B")]

    def test_find_accepts_string_ids(self, cache):
        cache.upsert(_item("A", 1))
        assert cache.find("ns=2;s=A") is not None
        assert "ns=2;s=A" in cache
        assert nid("Z") not in cache

    def test_find_missing(self, cache):
        assert cache.find(nid("missing")) is None
        assert cache.find_index(nid("missing")) == -1

    def test_search_by_name_is_case_insensitive(self, cache):
        cache.upsert(_item("A", True, browse_name="xMotorRun"))
        cache.upsert(_item("B", 3, browse_name="iMotorSpeed"))
        cache.upsert(_item("C", 4, browse_name="iPump"))

        found = cache.search_by_name_contains("MOTOR")
        assert [item.browse_name for item in found] == ["xMotorRun", "iMotorSpeed"]
        assert cache.search_by_name_contains("valve") == []


class TestFile:
    """Tests for save/load of the cache file."""

    def test_round_trip(self, cache):
        saved = [
            _item("A", False, BOOLEAN_TYPE),
            _item("B", 42),
            _item("C", 3.5, FLOAT_TYPE),
            _item("D", "text", None),
            _item("E", {"speed": 10, "enabled": True}, RECORD_TYPE),
        ]
        for item in saved:
            cache.upsert(item)
        cache.save_to_file()
        cache.clear()

        loaded = cache.load_from_file()

        assert [(i.node_id, i.value) for i in loaded] == [(i.node_id, i.value) for i in saved]
        assert loaded[0].category == ValueCategory.BOOLEAN
        assert loaded[4].category == ValueCategory.RECORD
        assert loaded[2].data_type_id == FLOAT_TYPE
        assert loaded[3].data_type_id is None

    def test_file_is_pretty_printed_json_array(self, cache):
        cache.upsert(_item("A", 1))
        path = cache.save_to_file()

        text = path.read_text(encoding="utf-8")
        assert text.startswith("[\n")
        data = json.loads(text)
        assert data[0]["node_id"] == "ns=2;s=A"
        assert data[0]["data_type_id"] == "i=6"
        assert not list(path.parent.glob("*.tmp"))

    def test_load_replaces_collection(self, cache):
        cache.upsert(_item("A", 1))
        cache.save_to_file()
        cache.upsert(_item("B", 2))

        loaded = cache.load_from_file()

        assert [item.node_id for item in loaded] == [nid("A")]
        assert cache.find(nid("B")) is None

    def test_load_missing_file(self, cache):
        with pytest.raises(CacheNotFoundError):
            cache.load_from_file()

    def test_load_malformed_file_leaves_cache_empty(self, cache):
        cache.upsert(_item("A", 1))
        cache.path.write_text("{not json", encoding="utf-8")

        with pytest.raises(CacheParseError):
            cache.load_from_file()
        assert len(cache) == 0

    def test_load_wrong_shape(self, cache):
        cache.path.write_text(json.dumps([{"value": 1}]), encoding="utf-8")
        with pytest.raises(CacheParseError):
            cache.load_from_file()

    @pytest.mark.parametrize("browse_name", [None, 5, ["xLamp"]])
    def test_load_rejects_non_string_browse_name(self, cache, browse_name):
        entry = {"node_id": "ns=2;s=A", "browse_name": browse_name, "value": 1}
        cache.path.write_text(json.dumps([entry]), encoding="utf-8")

        with pytest.raises(CacheParseError):
            cache.load_from_file()
        assert cache.search_by_name_contains("x") == []

    def test_load_during_browse_is_busy(self, cache):
        cache.upsert(_item("A", 1))
        cache.save_to_file()
        cache.begin_browse()

        with pytest.raises(BusyError):
            cache.load_from_file()
        assert len(cache) == 1

        cache.end_browse()
        assert len(cache.load_from_file()) == 1

    def test_begin_browse_twice_is_busy(self, cache):
        cache.begin_browse()
        with pytest.raises(BusyError):
            cache.begin_browse()
        assert cache.browse_in_progress is True


class TestDiscoveredItem:
    """Tests for item serialization and categories."""

    @pytest.mark.parametrize("value, category", [
        (True, ValueCategory.BOOLEAN),
        (0, ValueCategory.NUMERIC),
        (1.5, ValueCategory.NUMERIC),
        ({"a": 1}, ValueCategory.RECORD),
        (ua.LocalizedText("x"), ValueCategory.RECORD),
        ([1, 2], ValueCategory.OTHER),
        ("text", ValueCategory.OTHER),
        (None, ValueCategory.OTHER),
    ])
    def test_category_of(self, value, category):
        assert ValueCategory.of(value) == category

    def test_type_code(self):
        assert _item("A", 1, INT32_TYPE).type_code == 6
        assert _item("A", {}, RECORD_TYPE).type_code is None

    def test_to_dict_converts_structures(self):
        item = _item("A", ua.LocalizedText("hello"), RECORD_TYPE)
        data = item.to_dict()
        assert data["value"]["Text"] == "hello"
        assert data["data_type_id"] == "ns=2;i=3001"

    def test_from_dict_missing_field(self):
        with pytest.raises(ValueError):
            DiscoveredItem.from_dict({"browse_name": "x"})
