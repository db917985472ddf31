from adasline.oem import OEM_KNOWLEDGE, handle_oem_lookup, normalize_brand, oem_list, oem_lookup, search_all


class TestNormalizeBrand:
    def test_case_insensitive(self):
        assert normalize_brand("toyota") == "Toyota"

    def test_sister_brand_alias(self):
        assert normalize_brand("Lexus") == "Toyota"
        assert normalize_brand("chevy") == "Chevrolet"

    def test_prefix(self):
        assert normalize_brand("merc") == "Mercedes-Benz"

    def test_unknown(self):
        assert normalize_brand("Yugo") is None
        assert normalize_brand(None) is None


class TestOemLookup:
    def test_brand_overview(self):
        result = oem_lookup("Toyota")
        assert result["success"] is True
        assert result["brand"] == "Toyota"
        assert result["availableSystems"] == ["front camera", "front radar", "blind spot"]
        assert result["calibrationMethods"] == ["static"]
        assert "calibrationDetails" not in result

    def test_system_filter_uses_aliases(self):
        result = oem_lookup("Subaru", system="camera")
        details = result["calibrationDetails"]
        assert [c["system"] for c in details] == ["eyesight"]
        assert details[0]["staticRequired"] is True
        assert details[0]["dynamicRequired"] is True

    def test_query_narrows_quirks(self):
        result = oem_lookup("Toyota", query="emblem")
        assert len(result["quirks"]) == 1
        assert "emblem" in result["quirks"][0]

    def test_unknown_brand(self):
        result = oem_lookup("Yugo")
        assert result["success"] is False
        assert "Yugo" in result["message"]

    def test_voice_sized(self):
        for brand in OEM_KNOWLEDGE:
            result = oem_lookup(brand)
            assert len(result["prerequisites"]["criticalNotes"]) <= 3
            assert len(result["quirks"]) <= 5
            assert len(result["dtcBlockers"]) <= 5


class TestSearchAndDispatch:
    def test_search_across_brands(self):
        result = search_all("windshield")
        assert result["type"] == "search"
        assert result["totalResults"] > 0
        assert any(c["brand"] == "Toyota" for c in result["results"]["calibrations"])

    def test_query_only_is_search(self):
        assert handle_oem_lookup({"query": "windshield"})["type"] == "search"

    def test_brand_is_lookup(self):
        assert handle_oem_lookup({"brand": "Honda", "system": "radar"})["brand"] == "Honda"

    def test_no_arguments_lists_brands(self):
        result = handle_oem_lookup({})
        assert result["type"] == "list"
        assert result["availableOEMs"] == oem_list()
        assert result["availableOEMs"] == sorted(result["availableOEMs"])
