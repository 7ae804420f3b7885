"""
Distribution Engine Tests

Covers role-based, position-based and equal splits, forfeiture of external
and unassigned shares, student point withholding and author set validation.
Run with: python -m pytest tests/test_distribution_engine.py -v
"""

from decimal import Decimal

import pytest

from research_incentives.distribution_engine import distribute, validate_author_set
from research_incentives.errors import InvalidAuthorSet
from research_incentives.incentive_types import (
    Author,
    AuthorRole,
    DistributionMethod,
    PositionPercentages,
    RolePercentages,
)

FIRST = AuthorRole.FIRST
CORRESPONDING = AuthorRole.CORRESPONDING
CO_AUTHOR = AuthorRole.CO_AUTHOR

ROLE_BASED = DistributionMethod.ROLE_BASED
POSITION_BASED = DistributionMethod.POSITION_BASED
EQUAL = DistributionMethod.EQUAL


def author(author_id, position, *roles, internal=True, student=False):
    return Author(
        author_id=author_id,
        roles=frozenset(roles),
        position=position,
        is_internal=internal,
        is_student=student,
    )


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def role_table():
    return RolePercentages(first_author_pct=Decimal("35"), corresponding_author_pct=Decimal("30"))


@pytest.fixture
def position_table():
    return PositionPercentages(percentages=[Decimal(p) for p in ("40", "25", "15", "12", "8")])


# =============================================================================
# WORKED SCENARIOS
# =============================================================================

class TestWorkedScenarios:
    """Q1 paper worth 50000 / 50 points under a 35 / 30 role table."""

    def test_first_corresponding_and_internal_co_author(self, role_table):
        authors = [
            author("a1", 1, FIRST),
            author("a2", 2, CORRESPONDING),
            author("a3", 3, CO_AUTHOR),
        ]
        result = distribute(50000, 50, authors, ROLE_BASED, role_percentages=role_table)

        assert result.for_author("a1").incentive_amount == Decimal("17500")
        assert result.for_author("a1").points == Decimal("17.5")
        assert result.for_author("a2").incentive_amount == Decimal("15000")
        assert result.for_author("a2").points == Decimal("15")
        assert result.for_author("a3").incentive_amount == Decimal("17500")
        assert result.for_author("a3").points == Decimal("17.5")
        assert result.total_distributed == Decimal("50000")
        assert result.total_forfeited == 0

    def test_single_external_co_author_forfeits_pool(self, role_table):
        authors = [
            author("a1", 1, FIRST),
            author("a2", 2, CORRESPONDING),
            author("a3", 3, CO_AUTHOR, internal=False),
        ]
        result = distribute(50000, 50, authors, ROLE_BASED, role_percentages=role_table)

        co_author = result.for_author("a3")
        assert co_author.incentive_amount == 0
        assert co_author.points == 0
        assert result.total_distributed == Decimal("32500")
        assert result.total_forfeited == Decimal("17500")
        assert [f.reason for f in result.forfeitures] == ["co_author_pool_unclaimed"]
        assert result.forfeitures[0].amount == Decimal("17500")
        assert result.rounding_residue == 0

    def test_two_authors_split_evenly(self, role_table):
        authors = [author("a1", 1, FIRST), author("a2", 2, CORRESPONDING)]
        result = distribute(50000, 50, authors, ROLE_BASED, role_percentages=role_table)

        for author_id in ("a1", "a2"):
            allocation = result.for_author(author_id)
            assert allocation.percentage == Decimal("50")
            assert allocation.incentive_amount == Decimal("25000")
            assert allocation.points == Decimal("25")
            assert "50% each" in allocation.note
        assert result.total_distributed == Decimal("50000")

    def test_position_based_six_authors(self, position_table):
        authors = [author(f"a{i}", i) for i in range(1, 7)]
        result = distribute(100000, 100, authors, POSITION_BASED, position_percentages=position_table)

        expected = [
            ("40000", "40"), ("25000", "25"), ("15000", "15"),
            ("12000", "12"), ("8000", "8"), ("0", "0"),
        ]
        for allocation, (amount, points) in zip(result.allocations, expected):
            assert allocation.incentive_amount == Decimal(amount)
            assert allocation.points == Decimal(points)
        assert result.total_distributed == Decimal("100000")
        assert "beyond ranked positions" in result.for_author("a6").note


# =============================================================================
# PROPERTIES
# =============================================================================

class TestConservation:
    """All-internal author sets distribute the full total."""

    @pytest.mark.parametrize("co_authors", [1, 2, 3, 4, 5, 6])
    def test_role_based(self, role_table, co_authors):
        authors = [author("first", 1, FIRST), author("corr", 2, CORRESPONDING)]
        authors += [author(f"co{i}", i + 3, CO_AUTHOR) for i in range(co_authors)]

        result = distribute(42000, 42, authors, ROLE_BASED, role_percentages=role_table)

        assert result.total_distributed == Decimal("42000")
        assert result.total_forfeited == 0
        assert result.total_points_distributed == Decimal("42")
        assert result.total_points_forfeited == 0

    @pytest.mark.parametrize("count", [5, 7])
    def test_position_based(self, position_table, count):
        authors = [author(f"a{i}", i) for i in range(1, count + 1)]
        result = distribute(100000, 100, authors, POSITION_BASED, position_percentages=position_table)

        assert result.total_distributed == Decimal("100000")
        assert result.total_forfeited == 0

    def test_equal(self):
        authors = [author(f"a{i}", i) for i in range(1, 5)]
        result = distribute(1000, 20, authors, EQUAL)

        assert all(a.incentive_amount == Decimal("250") for a in result.allocations)
        assert all(a.points == Decimal("5") for a in result.allocations)
        assert result.total_forfeited == 0


class TestDeterminism:
    def test_identical_inputs_identical_results(self, role_table):
        authors = [
            author("a1", 1, FIRST, CORRESPONDING),
            author("a2", 2, CO_AUTHOR),
            author("a3", 3, CO_AUTHOR, internal=False),
            author("a4", 4, CO_AUTHOR, student=True),
        ]
        first = distribute(Decimal("12345.67"), 33, authors, ROLE_BASED, role_percentages=role_table)
        second = distribute(Decimal("12345.67"), 33, authors, ROLE_BASED, role_percentages=role_table)

        assert first == second
        assert first.model_dump_json() == second.model_dump_json()


class TestSoleAuthor:
    def test_internal_author_receives_everything(self, role_table):
        result = distribute(50000, 50, [author("a1", 1, FIRST)], ROLE_BASED, role_percentages=role_table)

        allocation = result.for_author("a1")
        assert allocation.percentage == Decimal("100")
        assert allocation.incentive_amount == Decimal("50000")
        assert allocation.points == Decimal("50")
        assert allocation.note == "Sole author: 100%"
        assert result.total_forfeited == 0

    def test_external_author_forfeits_everything(self, role_table):
        result = distribute(
            50000, 50, [author("a1", 1, FIRST, internal=False)], ROLE_BASED, role_percentages=role_table
        )

        allocation = result.for_author("a1")
        assert allocation.incentive_amount == 0
        assert allocation.points == 0
        assert allocation.forfeited_amount == Decimal("50000")
        assert result.total_distributed == 0
        assert result.total_forfeited == Decimal("50000")
        assert result.total_points_forfeited == Decimal("50")

    def test_student_author_keeps_money_without_points(self, position_table):
        result = distribute(
            10000, 10, [author("s1", 1, student=True)], POSITION_BASED, position_percentages=position_table
        )

        allocation = result.for_author("s1")
        assert allocation.incentive_amount == Decimal("10000")
        assert allocation.points == 0
        assert allocation.forfeited_points == Decimal("10")
        assert result.total_points_forfeited == Decimal("10")


class TestExclusions:
    def test_external_authors_never_paid(self, role_table):
        authors = [
            author("a1", 1, FIRST, internal=False),
            author("a2", 2, CORRESPONDING),
            author("a3", 3, CO_AUTHOR, internal=False),
            author("a4", 4, CO_AUTHOR),
        ]
        result = distribute(50000, 50, authors, ROLE_BASED, role_percentages=role_table)

        for author_id in ("a1", "a3"):
            assert result.for_author(author_id).incentive_amount == 0
            assert result.for_author(author_id).points == 0

    def test_students_never_earn_points(self, role_table):
        authors = [
            author("a1", 1, FIRST, student=True),
            author("a2", 2, CORRESPONDING),
            author("a3", 3, CO_AUTHOR, student=True),
        ]
        result = distribute(50000, 50, authors, ROLE_BASED, role_percentages=role_table)

        assert result.for_author("a1").points == 0
        assert result.for_author("a1").incentive_amount == Decimal("17500")
        assert result.for_author("a3").points == 0
        assert result.total_points_distributed == Decimal("15")
        assert result.total_points_forfeited == Decimal("35")
        assert result.total_forfeited == 0
        assert "points withheld (student)" in result.for_author("a3").note

    def test_rank_six_and_beyond_earn_nothing(self, position_table):
        authors = [author(f"a{i}", i) for i in range(1, 9)]
        result = distribute(100000, 100, authors, POSITION_BASED, position_percentages=position_table)

        for allocation in result.allocations[5:]:
            assert allocation.incentive_amount == 0
            assert allocation.points == 0


# =============================================================================
# ROLE-BASED RULES
# =============================================================================

class TestRoleBased:
    def test_external_first_author_share_is_not_redistributed(self, role_table):
        authors = [
            author("a1", 1, FIRST, internal=False),
            author("a2", 2, CORRESPONDING),
            author("a3", 3, CO_AUTHOR),
        ]
        result = distribute(50000, 50, authors, ROLE_BASED, role_percentages=role_table)

        assert result.for_author("a1").forfeited_amount == Decimal("17500")
        assert result.for_author("a2").incentive_amount == Decimal("15000")
        assert result.for_author("a3").incentive_amount == Decimal("17500")
        assert result.total_forfeited == Decimal("17500")
        assert result.forfeitures == []
        assert "forfeited (external author)" in result.for_author("a1").note

    def test_external_co_author_share_redistributed(self, role_table):
        authors = [
            author("a1", 1, FIRST),
            author("a2", 2, CORRESPONDING),
            author("a3", 3, CO_AUTHOR),
            author("a4", 4, CO_AUTHOR, internal=False),
            author("a5", 5, CO_AUTHOR),
        ]
        result = distribute(50000, 50, authors, ROLE_BASED, role_percentages=role_table)

        assert result.for_author("a3").percentage == Decimal("17.5")
        assert result.for_author("a5").percentage == Decimal("17.5")
        assert result.for_author("a4").percentage == 0
        assert result.for_author("a4").note == "External co-author: share redistributed to internal co-authors"
        assert result.total_distributed == Decimal("50000")

    def test_first_and_corresponding_percentages_combine(self, role_table):
        authors = [
            author("a1", 1, FIRST, CORRESPONDING),
            author("a2", 2, CO_AUTHOR),
            author("a3", 3, CO_AUTHOR),
        ]
        result = distribute(10000, 10, authors, ROLE_BASED, role_percentages=role_table)

        lead = result.for_author("a1")
        assert lead.percentage == Decimal("65")
        assert lead.incentive_amount == Decimal("6500")
        assert lead.note == "First + corresponding: 35% + 30% = 65%"
        assert result.for_author("a2").incentive_amount == Decimal("1750")
        assert result.for_author("a2").note == "Co-author: 35% / 2 internal co-authors = 17.5%"

    def test_two_authors_with_co_author_use_table(self, role_table):
        authors = [author("a1", 1, FIRST, CORRESPONDING), author("a2", 2, CO_AUTHOR)]
        result = distribute(10000, 10, authors, ROLE_BASED, role_percentages=role_table)

        assert result.for_author("a1").incentive_amount == Decimal("6500")
        assert result.for_author("a2").incentive_amount == Decimal("3500")

    def test_unheld_corresponding_role_is_forfeited(self, role_table):
        authors = [
            author("a1", 1, FIRST),
            author("a2", 2, CO_AUTHOR),
            author("a3", 3, CO_AUTHOR),
        ]
        result = distribute(50000, 50, authors, ROLE_BASED, role_percentages=role_table)

        assert [f.reason for f in result.forfeitures] == ["unassigned_corresponding_role"]
        assert result.forfeitures[0].amount == Decimal("15000")
        assert result.total_forfeited == Decimal("15000")
        assert result.rounding_residue == 0

    def test_uneven_pool_residue_is_forfeited(self, role_table):
        authors = [author("a1", 1, FIRST), author("a2", 2, CORRESPONDING)]
        authors += [author(f"co{i}", i + 3, CO_AUTHOR) for i in range(3)]
        result = distribute(50000, 50, authors, ROLE_BASED, role_percentages=role_table)

        assert result.for_author("co0").incentive_amount == Decimal("5833.33")
        assert result.total_distributed == Decimal("49999.99")
        assert result.total_forfeited == Decimal("0.01")
        assert result.rounding_residue == Decimal("0.01")


# =============================================================================
# POSITION-BASED AND EQUAL
# =============================================================================

class TestPositionBased:
    def test_unfilled_ranks_are_forfeited(self, position_table):
        authors = [author(f"a{i}", i) for i in range(1, 4)]
        result = distribute(100000, 100, authors, POSITION_BASED, position_percentages=position_table)

        assert [f.reason for f in result.forfeitures] == ["unfilled_position_4", "unfilled_position_5"]
        assert result.total_distributed == Decimal("80000")
        assert result.total_forfeited == Decimal("20000")

    def test_external_rank_forfeits(self, position_table):
        authors = [author(f"a{i}", i, internal=(i != 2)) for i in range(1, 6)]
        result = distribute(100000, 100, authors, POSITION_BASED, position_percentages=position_table)

        assert result.for_author("a2").incentive_amount == 0
        assert result.for_author("a2").forfeited_amount == Decimal("25000")
        assert result.for_author("a3").incentive_amount == Decimal("15000")
        assert result.total_forfeited == Decimal("25000")


class TestEqual:
    def test_thirds_leave_residue(self):
        authors = [author(f"a{i}", i) for i in range(1, 4)]
        result = distribute(1000, 0, authors, EQUAL)

        assert all(a.incentive_amount == Decimal("333.33") for a in result.allocations)
        assert result.total_forfeited == Decimal("0.01")
        assert result.rounding_residue == Decimal("0.01")
        assert result.allocations[0].note == "Equal split: 100% / 3 = 33.33%"

    def test_rounding_never_overshoots_total(self):
        authors = [author(f"a{i}", i) for i in range(1, 4)]
        result = distribute(Decimal("0.02"), 0, authors, EQUAL)

        assert [a.incentive_amount for a in result.allocations] == [
            Decimal("0.01"), Decimal("0.01"), Decimal("0.00"),
        ]
        assert result.total_distributed == Decimal("0.02")
        assert result.total_forfeited == 0

    def test_whole_currency_unit(self):
        authors = [author(f"a{i}", i) for i in range(1, 4)]
        result = distribute(100, 0, authors, EQUAL, currency_unit=Decimal("1"))

        assert [a.incentive_amount for a in result.allocations] == [Decimal("33")] * 3
        assert result.total_forfeited == Decimal("1")


# =============================================================================
# VALIDATION
# =============================================================================

class TestValidation:
    def test_empty_author_list(self, role_table):
        with pytest.raises(InvalidAuthorSet):
            distribute(1000, 1, [], ROLE_BASED, role_percentages=role_table)

    def test_duplicate_positions(self, position_table):
        with pytest.raises(InvalidAuthorSet, match="Position 1"):
            distribute(1000, 1, [author("a1", 1), author("a2", 1)], POSITION_BASED,
                       position_percentages=position_table)

    def test_duplicate_author_ids(self):
        with pytest.raises(InvalidAuthorSet, match="more than once"):
            distribute(1000, 1, [author("a1", 1), author("a1", 2)], EQUAL)

    def test_non_positive_position(self):
        with pytest.raises(InvalidAuthorSet, match="invalid position"):
            distribute(1000, 1, [author("a1", 0)], EQUAL)

    def test_role_based_without_role_table(self):
        with pytest.raises(InvalidAuthorSet, match="no role percentages"):
            distribute(1000, 1, [author("a1", 1, FIRST)], ROLE_BASED)

    def test_position_based_without_position_table(self):
        with pytest.raises(InvalidAuthorSet, match="no position percentages"):
            distribute(1000, 1, [author("a1", 1)], POSITION_BASED)

    def test_author_without_role(self, role_table):
        with pytest.raises(InvalidAuthorSet, match="no role"):
            distribute(1000, 1, [author("a1", 1, FIRST), author("a2", 2)], ROLE_BASED,
                       role_percentages=role_table)

    def test_co_author_with_primary_role(self, role_table):
        with pytest.raises(InvalidAuthorSet, match="both co-author"):
            validate_author_set([author("a1", 1, FIRST, CO_AUTHOR)], ROLE_BASED, role_percentages=role_table)

    def test_two_first_authors(self, role_table):
        authors = [author("a1", 1, FIRST), author("a2", 2, FIRST), author("a3", 3, CO_AUTHOR)]
        with pytest.raises(InvalidAuthorSet) as exc_info:
            distribute(1000, 1, authors, ROLE_BASED, role_percentages=role_table)
        assert exc_info.value.details["author_ids"] == ["a1", "a2"]
        assert exc_info.value.fatal is True

    def test_negative_total_rejected(self):
        with pytest.raises(ValueError):
            distribute(-1, 0, [author("a1", 1)], EQUAL)
