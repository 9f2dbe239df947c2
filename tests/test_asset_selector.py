"""
Tests for release asset selection.
"""

import pytest

from dws.core.errors import AmbiguousAsset, InvalidFilter, NoMatchingAsset
from dws.core.models.machine import MachineDescriptor
from dws.core.services.asset_selector import qualifier_count, select_asset, tag_score

FILTERS = [r"^rg-.*-windows.*$", r"^rg-.*-linux.*$"]


class TestSelectAsset:
    def test_second_filter_selects_when_first_matches_nothing(self, machine: MachineDescriptor):
        candidates = ["rg-14.0.0-x86_64-unknown-linux-musl.tar.gz", "rg-14.0.0-x86_64-apple-darwin.tar.gz"]
        selection = select_asset(FILTERS, candidates, machine)
        assert selection.name == "rg-14.0.0-x86_64-unknown-linux-musl.tar.gz"
        assert selection.pattern_index == 1

    def test_tie_is_ambiguous(self, machine: MachineDescriptor):
        candidates = [
            "rg-14.0.0-x86_64-unknown-linux-musl.tar.gz",
            "rg-14.0.0-x86_64-unknown-linux-gnu.tar.gz",
        ]
        with pytest.raises(AmbiguousAsset) as exc:
            select_asset(FILTERS, candidates, machine)
        assert exc.value.pattern == FILTERS[1]
        assert exc.value.tied == sorted(candidates)

    def test_first_matching_filter_wins(self, machine: MachineDescriptor):
        candidates = ["rg-14-x86_64-pc-windows-msvc.zip", "rg-14-x86_64-unknown-linux-musl.tar.gz"]
        assert select_asset(FILTERS, candidates, machine).name == "rg-14-x86_64-pc-windows-msvc.zip"

    def test_arch_match_breaks_tie(self, machine: MachineDescriptor):
        candidates = ["rg-14-aarch64-linux.tar.gz", "rg-14-x86_64-linux.tar.gz"]
        assert select_asset([r"linux"], candidates, machine).name == "rg-14-x86_64-linux.tar.gz"

    def test_arch_alias(self):
        mac = MachineDescriptor(os="macos", arch="aarch64")
        candidates = ["tool-darwin-amd64.tar.gz", "tool-darwin-arm64.tar.gz"]
        assert select_asset([r"darwin"], candidates, mac).name == "tool-darwin-arm64.tar.gz"

    def test_fewest_qualifiers_breaks_tie(self, machine: MachineDescriptor):
        candidates = ["fd-linux-x86_64.tar.gz", "fd-linux-x86_64-debug.tar.gz"]
        assert select_asset([r"^fd-"], candidates, machine).name == "fd-linux-x86_64.tar.gz"

    def test_no_match(self, machine: MachineDescriptor):
        with pytest.raises(NoMatchingAsset) as exc:
            select_asset(FILTERS, ["rg-14-apple-darwin.tar.gz"], machine)
        assert exc.value.filters == FILTERS
        assert exc.value.candidates == ["rg-14-apple-darwin.tar.gz"]

    def test_empty_filters_match_anything(self, machine: MachineDescriptor):
        assert select_asset([], ["install.sh"], machine).name == "install.sh"

    def test_invalid_filter(self, machine: MachineDescriptor):
        with pytest.raises(InvalidFilter):
            select_asset(["(unclosed"], ["a"], machine)

    def test_deterministic_regardless_of_order(self, machine: MachineDescriptor):
        candidates = ["b-linux-x86_64.tgz", "b-linux-aarch64.tgz", "b-darwin-x86_64.tgz"]
        first = select_asset([r"^b-"], candidates, machine)
        second = select_asset([r"^b-"], list(reversed(candidates)), machine)
        assert first == second
        assert first.name == "b-linux-x86_64.tgz"


class TestRanking:
    def test_tag_score(self, machine: MachineDescriptor):
        assert tag_score("rg-x86_64-unknown-linux-musl.tar.gz", machine) == 2
        assert tag_score("rg-amd64-linux.tar.gz", machine) == 2
        assert tag_score("rg-linux.tar.gz", machine) == 1
        assert tag_score("rg-src.tar.gz", machine) == 0

    def test_os_alias_is_token_match(self, machine: MachineDescriptor):
        # "linuxbrew" is not the "linux" token
        assert tag_score("pkg-linuxbrew.tar.gz", machine) == 0

    def test_qualifier_count(self):
        assert qualifier_count("rg-14.0.0-x86_64.tar.gz") == 8
        assert qualifier_count("rg") == 1
