"""Tests for statutory citation parsing and scoring."""

import pytest

from provisions.citation import Citation, citation_score, normalize_citation, parse_citations


class TestParseCitations:
    """Tests for parse_citations() and normalize_citation()."""

    def test_usc_with_subsections(self):
        assert parse_citations("7 U.S.C. 2014(e)(6)") == [Citation("USC", "7", "2014", ("e", "6"))]

    @pytest.mark.parametrize("text", ["7 USC § 2014(e)", "7 U.S.C. §2014(e)", "Title 7, Section 2014(e)"])
    def test_usc_variants_normalize_alike(self, text):
        assert normalize_citation(text) == "7 U.S.C. 2014(e)"

    def test_cfr_section_becomes_first_subsection(self):
        assert normalize_citation("7 CFR 273.9(d)") == "7 CFR 273(9)(d)"

    def test_multiple_citations_in_order(self):
        text = "Amends 7 U.S.C. 2017(a) and conforms 7 CFR 273.10(e)"
        assert [str(c) for c in parse_citations(text)] == ["7 U.S.C. 2017(a)", "7 CFR 273(10)(e)"]

    def test_no_citation(self):
        assert parse_citations("Section 4 is amended") == []
        assert normalize_citation(None) is None


class TestCitationScore:
    """Tests for citation_score()."""

    @pytest.mark.parametrize(
        "left,right,expected",
        [
            ("7 U.S.C. 2014(e)", "7 USC 2014(e)", 1.0),
            ("7 U.S.C. 2014(e)(6)", "7 U.S.C. 2014(e)", 0.9),
            ("7 U.S.C. 2014(e)", "7 U.S.C. 2014(k)", 0.7),
            ("7 U.S.C. 2017(a)", "7 U.S.C. 2014(e)", 0.3),
            ("42 U.S.C. 1396a", "7 U.S.C. 2014", 0.0),
            ("7 CFR 273.9(d)", "7 U.S.C. 2014(e)", 0.0),
            ("7 CFR 273.9(d)(1)", "7 CFR 273.9", 0.9),
        ],
    )
    def test_structural_scores(self, left, right, expected):
        assert citation_score(left, right) == expected

    def test_best_pair_wins(self):
        assert citation_score("7 U.S.C. 2017(a); 7 U.S.C. 2014(e)", "7 U.S.C. 2014(e)") == 1.0

    def test_missing_side_scores_zero(self):
        assert citation_score(None, "7 U.S.C. 2014") == 0.0
        assert citation_score("7 U.S.C. 2014", "") == 0.0
