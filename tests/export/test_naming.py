"""Tests for search reference strings and output names."""

import pytest

from datasearches.export.naming import SearchStrings, get_subref, keep_numbers, strip_illegals


class TestStringFunctions:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Manor Farm", "Manor Farm"),
            ('a<b>c:d"e', "a_b_c_d_e"),
            ("what?*", "what__"),
            ("tab\there", "tab_here"),
            ("trailing. ", "trailing"),
            ("dir/file", "dir_file"),
        ],
    )
    def test_strip_illegals(self, text, expected):
        assert strip_illegals(text) == expected

    def test_strip_illegals_keeps_separators_in_paths(self):
        assert strip_illegals("out/2024:15", is_path=True) == "out/2024_15"

    def test_keep_numbers(self):
        assert keep_numbers("ABC_2024-015") == "2024_015"
        assert keep_numbers("2024_015") == "2024_015"
        assert keep_numbers("no digits") == ""

    def test_get_subref(self):
        assert get_subref("2024_015") == "015"
        assert get_subref("2024") == "2024"


class TestSearchStrings:
    @pytest.fixture
    def strings(self):
        return SearchStrings.build("ABC/2024/015", "Manor: Farm", "500m")

    def test_build(self, strings):
        assert strings.reference == "ABC_2024_015"
        assert strings.short_ref == "2024_015"
        assert strings.subref == "015"
        assert strings.site_name == "Manor_ Farm"
        assert strings.radius == "500m"

    def test_replace_is_case_insensitive(self, strings):
        text = strings.replace("%SHORTREF%_%SiteName%_%radius%_%ref%_%subref%")

        assert text == "2024_015_Manor_ Farm_500m_ABC_2024_015_015"

    def test_output_name_strips_illegals(self, strings):
        assert strings.output_name("%subref%?") == "015_"
        assert strings.output_name("out/%shortref%", is_path=True) == "out/2024_015"

    def test_custom_replacement_character(self):
        strings = SearchStrings.build("2024/015", rep_char="-")

        assert strings.reference == "2024-015"
        assert strings.subref == "015"
