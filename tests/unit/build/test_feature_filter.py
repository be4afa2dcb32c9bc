"""Tests for feature blacklist/whitelist matching."""

from fwbuild.build.feature_filter import FeatureFilter, FilterEntry, entries_from_map, match_feature
from fwbuild.packages import LocalPackage


def pkg(name, repo=None, **settings):
    manifest = {key.replace("_", ".", 1): value for key, value in settings.items()}
    return LocalPackage(name, "/tmp", manifest, repo=repo)


class TestMatchFeature:
    """Tests for match_feature()."""

    def test_pattern_searched_in_full_name(self):
        entries = [FilterEntry("os", "SHELL")]
        assert match_feature(entries, pkg("libs/os"), "SHELL")
        assert match_feature(entries, pkg("libs/os", repo="vendor"), "SHELL")
        assert not match_feature(entries, pkg("libs/util"), "SHELL")

    def test_feature_must_match_exactly(self):
        entries = [FilterEntry(".*", "SHELL")]
        assert not match_feature(entries, pkg("libs/os"), "SHELL_EXT")

    def test_repository_prefix_is_part_of_name(self):
        entries = [FilterEntry("^@vendor/", "NET")]
        assert match_feature(entries, pkg("libs/net", repo="vendor"), "NET")
        assert not match_feature(entries, pkg("libs/net"), "NET")

    def test_absent_package_has_empty_name(self):
        assert match_feature([FilterEntry("^$", "X")], None, "X")
        assert not match_feature([FilterEntry("os", "X")], None, "X")

    def test_empty_list(self):
        assert not match_feature([], pkg("libs/os"), "X")

    def test_invalid_pattern_never_matches(self):
        assert not match_feature([FilterEntry("libs/(", "X")], pkg("libs/("), "X")


class TestFeatureFilter:
    """Tests for FeatureFilter.is_feature_valid()."""

    def test_valid_without_lists(self):
        assert FeatureFilter().is_feature_valid(pkg("libs/os"), "SHELL")

    def test_blacklisted(self):
        feature_filter = FeatureFilter()
        feature_filter.blacklist.append(FilterEntry("libs/os", "SHELL"))

        assert not feature_filter.is_feature_valid(pkg("libs/os"), "SHELL")
        assert feature_filter.is_feature_valid(pkg("libs/os"), "OTHER")
        assert feature_filter.is_feature_valid(pkg("apps/blinky"), "SHELL")

    def test_whitelist_restores_blacklisted_feature(self):
        feature_filter = FeatureFilter()
        feature_filter.blacklist.append(FilterEntry("libs/", "SHELL"))
        feature_filter.whitelist.append(FilterEntry("libs/os$", "SHELL"))

        assert feature_filter.is_feature_valid(pkg("libs/os"), "SHELL")
        assert not feature_filter.is_feature_valid(pkg("libs/util"), "SHELL")

    def test_whitelist_alone_changes_nothing(self):
        feature_filter = FeatureFilter()
        feature_filter.whitelist.append(FilterEntry("libs/os", "SHELL"))

        assert feature_filter.is_feature_valid(pkg("libs/util"), "SHELL")

    def test_lists_concatenate_contributions_in_order(self):
        bsp = pkg("hw/bsp/native", pkg_feature_blacklist={"a": "X"})
        app = pkg("apps/blinky", pkg_feature_blacklist={"b": "Y"}, pkg_feature_whitelist={"a1": "X"})
        target = pkg("targets/blinky", pkg_feature_blacklist={"c": "Z"})

        feature_filter = FeatureFilter()
        for contributor in (bsp, app, target):
            feature_filter.add_package(contributor)

        assert feature_filter.blacklist == [FilterEntry("a", "X"), FilterEntry("b", "Y"), FilterEntry("c", "Z")]
        assert feature_filter.whitelist == [FilterEntry("a1", "X")]

    def test_add_none_package(self):
        feature_filter = FeatureFilter()
        feature_filter.add_package(None)
        assert feature_filter.blacklist == []

    def test_clear(self):
        feature_filter = FeatureFilter()
        feature_filter.add_package(pkg("t", pkg_feature_blacklist={"a": "X"}, pkg_feature_whitelist={"b": "X"}))
        feature_filter.clear()

        assert feature_filter.blacklist == []
        assert feature_filter.whitelist == []


def test_entries_from_map_keeps_order():
    assert entries_from_map({"z": "A", "a": "B"}) == [FilterEntry("z", "A"), FilterEntry("a", "B")]
