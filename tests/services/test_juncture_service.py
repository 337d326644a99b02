"""Tests for the juncture reconciler."""
import logging

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.benefit import Benefit, CardBenefit
from models.card import Card
from schemas.juncture import RelationshipConfig
from services.card_service import card_relationships, get_card
from services.exceptions import ConfigurationError, PersistenceError
from services.juncture_service import JunctureReconciler
from services.owner_lifecycle import save_owner


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def benefits(db_session: AsyncSession) -> list[Benefit]:
    """Create benefits with ids 1 to 5."""
    rows = [Benefit(id=i, name=f"Benefit {i}") for i in range(1, 6)]
    db_session.add_all(rows)
    await db_session.flush()
    return rows


@pytest.fixture
async def card(db_session: AsyncSession, benefits: list[Benefit]) -> Card:  # noqa: ARG001
    """Create card 10 linked to benefits 1 and 2, then load it through the reconciler."""
    db_session.add(Card(id=10, name="Gold"))
    await db_session.flush()
    db_session.add_all([
        CardBenefit(card_id=10, benefit_id=1, compares="better"),
        CardBenefit(card_id=10, benefit_id=2, compares="same"),
    ])
    await db_session.flush()
    return await get_card(db_session, 10)


async def stored_benefit_ids(db: AsyncSession, card_id: int) -> list[int]:
    result = await db.execute(
        select(CardBenefit.benefit_id)
        .where(CardBenefit.card_id == card_id)
        .order_by(CardBenefit.benefit_id),
    )
    return list(result.scalars().all())


def new_card(name: str = "Silver", scenario: str = "create") -> Card:
    card = Card(name=name)
    card.scenario = scenario
    return card


# ---------------------------------------------------------------------------
# attach
# ---------------------------------------------------------------------------


def test__attach__requires_relationships() -> None:
    with pytest.raises(ConfigurationError):
        JunctureReconciler.attach(Card, [])


def test__field_bindings() -> None:
    [binding] = card_relationships.field_bindings()
    assert binding.relation_name == "benefits"
    assert binding.related_ids_field == "benefit_ids"
    assert binding.extra_data_field == "benefits_data"
    assert binding.extra_attributes == ["compares"]


# ---------------------------------------------------------------------------
# on_load
# ---------------------------------------------------------------------------


async def test__on_load__populates_ids_and_extra_data(card: Card) -> None:
    assert card.benefit_ids == [1, 2]
    assert set(card.benefits_data) == {1, 2}
    assert card.benefits_data[1].compares == "better"

    [descriptor] = card_relationships.descriptors
    state = card_relationships.state_for(card, descriptor)
    assert state.original_ids == [1, 2]
    assert set(state.original_rows_by_id) == {1, 2}
    assert state.added_ids == []


async def test__on_load__lazy_relation_logs_warning(
    db_session: AsyncSession,
    card: Card,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """A juncture relation that was not eager-loaded is loaded with a warning."""
    db_session.expire(card, ["card_benefits"])
    with caplog.at_level(logging.WARNING, logger="services.juncture_service"):
        await card_relationships.on_load(db_session, card)

    assert "was not eager-loaded" in caplog.text
    assert card.benefit_ids == [1, 2]


async def test__on_load__ignores_extra_data_without_extra_attributes(
    db_session: AsyncSession,
    card: Card,
) -> None:
    reconciler = JunctureReconciler.attach(
        Card,
        [RelationshipConfig(juncture_model=CardBenefit, related_model=Benefit)],
    )
    card.benefits_data = None
    await reconciler.on_load(db_session, card)
    [descriptor] = reconciler.descriptors
    assert reconciler.state_for(card, descriptor).original_rows_by_id == {}
    assert card.benefits_data is None


# ---------------------------------------------------------------------------
# coerce_extra_data
# ---------------------------------------------------------------------------


async def test__coerce_extra_data__builds_stamped_rows(card: Card) -> None:
    card.benefits_data = {"3": {"compares": "x", "card_id": 99}}
    card_relationships.coerce_extra_data(card)

    entry = card.benefits_data[3]
    assert isinstance(entry, CardBenefit)
    assert entry.compares == "x"
    # Owner key comes from the owner, never from the submitted data
    assert entry.card_id == 10


async def test__coerce_extra_data__leaves_rows_untouched(card: Card) -> None:
    row = CardBenefit(compares="kept")
    card.benefits_data = {3: row}
    card_relationships.coerce_extra_data(card)
    card_relationships.coerce_extra_data(card)
    assert card.benefits_data[3] is row


async def test__coerce_extra_data__invalid_key(card: Card) -> None:
    card.benefits_data = {"three": {"compares": "x"}}
    with pytest.raises(PersistenceError, match="Invalid related id"):
        card_relationships.coerce_extra_data(card)


async def test__coerce_extra_data__validator_failure(card: Card) -> None:
    card.benefits_data = {3: {"compares": "x" * 51}}
    with pytest.raises(PersistenceError) as exc_info:
        card_relationships.coerce_extra_data(card)

    error = exc_info.value
    assert error.relation_name == "benefits"
    assert error.related_id == 3
    assert error.action == "create"
    assert str(error).startswith("There was a problem creating a relationship")
    assert "at most 50 characters" in str(error)


# ---------------------------------------------------------------------------
# after_insert
# ---------------------------------------------------------------------------


async def test__after_insert__creates_row_per_id(
    db_session: AsyncSession,
    benefits: list[Benefit],  # noqa: ARG001
) -> None:
    card = new_card()
    card.benefit_ids = ["1", 3, 3]
    await save_owner(db_session, card, [card_relationships])

    assert await stored_benefit_ids(db_session, card.id) == [1, 3]
    [descriptor] = card_relationships.descriptors
    assert card_relationships.state_for(card, descriptor).added_ids == [1, 3]


async def test__after_insert__copies_extra_data(
    db_session: AsyncSession,
    benefits: list[Benefit],  # noqa: ARG001
) -> None:
    card = new_card()
    card.benefit_ids = [3, 4]
    card.benefits_data = {"3": {"compares": "x"}}
    await save_owner(db_session, card, [card_relationships])

    loaded = await get_card(db_session, card.id)
    assert loaded.benefits_data[3].compares == "x"
    assert loaded.benefits_data[4].compares is None


async def test__after_insert__non_collection_inserts_nothing(
    db_session: AsyncSession,
    sql_log,  # noqa: ANN001
) -> None:
    card = new_card()
    card.benefit_ids = ""
    await save_owner(db_session, card, [card_relationships])
    assert sql_log.count("INSERT INTO card_benefit") == 0


async def test__after_insert__unknown_related_id(
    db_session: AsyncSession,
    benefits: list[Benefit],  # noqa: ARG001
) -> None:
    card = new_card()
    card.benefit_ids = [1, 999]
    with pytest.raises(PersistenceError) as exc_info:
        await save_owner(db_session, card, [card_relationships])
    assert exc_info.value.related_id == 999
    assert exc_info.value.action == "create"


async def test__after_insert__fractional_id_rejected(
    db_session: AsyncSession,
    benefits: list[Benefit],  # noqa: ARG001
) -> None:
    """A fractional id is never truncated onto a different benefit."""
    card = new_card()
    card.benefit_ids = [2.9]
    with pytest.raises(PersistenceError, match="Invalid related id"):
        await save_owner(db_session, card, [card_relationships])
    assert await stored_benefit_ids(db_session, card.id) == []


# ---------------------------------------------------------------------------
# after_update
# ---------------------------------------------------------------------------


async def test__after_update__end_to_end(
    db_session: AsyncSession,
    card: Card,
    sql_log,  # noqa: ANN001
) -> None:
    """Original [1, 2], desired [2, 3]: delete 1, insert 3, leave 2 alone."""
    sql_log.clear()
    card.scenario = "update"
    card.benefit_ids = [2, 3]
    await save_owner(db_session, card, [card_relationships])

    assert await stored_benefit_ids(db_session, 10) == [2, 3]
    assert sql_log.count("DELETE FROM card_benefit") == 1
    assert sql_log.count("INSERT INTO card_benefit") == 1
    assert sql_log.count("UPDATE card_benefit") == 0


@pytest.mark.parametrize(
    "desired",
    [[], [1], [2, 1], [3, 4, 5], [5, 1, 4, 2]],
)
async def test__after_update__final_set_equals_desired(
    db_session: AsyncSession,
    card: Card,
    desired: list[int],
) -> None:
    card.benefit_ids = desired
    await save_owner(db_session, card, [card_relationships])
    assert await stored_benefit_ids(db_session, 10) == sorted(desired)


@pytest.mark.parametrize("submitted", [None, "", 0])
async def test__after_update__non_collection_removes_all(
    db_session: AsyncSession,
    card: Card,
    submitted: object,
) -> None:
    card.benefit_ids = submitted
    await save_owner(db_session, card, [card_relationships])
    assert await stored_benefit_ids(db_session, 10) == []


async def test__after_update__second_call_is_noop(
    db_session: AsyncSession,
    card: Card,
    sql_log,  # noqa: ANN001
) -> None:
    card.benefit_ids = [2, 3]
    await card_relationships.after_update(db_session, card)
    sql_log.clear()

    await card_relationships.after_update(db_session, card)

    assert sql_log.count("DELETE") == 0
    assert sql_log.count("INSERT") == 0
    assert sql_log.count("UPDATE") == 0
    assert await stored_benefit_ids(db_session, 10) == [2, 3]


async def test__after_update__added_ids_not_reinserted(
    db_session: AsyncSession,
    benefits: list[Benefit],  # noqa: ARG001
    sql_log,  # noqa: ANN001
) -> None:
    """An id inserted by after_insert counts as existing for a later update."""
    card = new_card()
    card.benefit_ids = [5]
    await save_owner(db_session, card, [card_relationships])
    sql_log.clear()

    await card_relationships.after_update(db_session, card)

    assert sql_log.count("INSERT INTO card_benefit") == 0
    assert await stored_benefit_ids(db_session, card.id) == [5]


async def test__after_update__removes_ids_added_in_same_lifetime(
    db_session: AsyncSession,
    benefits: list[Benefit],  # noqa: ARG001
) -> None:
    card = new_card()
    card.benefit_ids = [4, 5]
    await save_owner(db_session, card, [card_relationships])

    card.benefit_ids = [5]
    await card_relationships.after_update(db_session, card)

    assert await stored_benefit_ids(db_session, card.id) == [5]
    [descriptor] = card_relationships.descriptors
    assert card_relationships.state_for(card, descriptor).added_ids == [5]


async def test__after_update__updates_changed_extra_data(
    db_session: AsyncSession,
    card: Card,
    sql_log,  # noqa: ANN001
) -> None:
    sql_log.clear()
    card.benefits_data = {"1": {"compares": "worse"}, "2": {"compares": "same"}}
    await save_owner(db_session, card, [card_relationships])

    # Only the row whose value changed is written
    assert sql_log.count("UPDATE card_benefit") == 1
    loaded = await get_card(db_session, 10)
    assert loaded.benefits_data[1].compares == "worse"
    assert loaded.benefits_data[2].compares == "same"


async def test__after_update__resaves_unchanged_rows_when_configured(
    db_session: AsyncSession,
    card: Card,
    sql_log,  # noqa: ANN001
) -> None:
    reconciler = JunctureReconciler.attach(
        Card,
        [
            RelationshipConfig(
                juncture_model=CardBenefit,
                related_model=Benefit,
                extra_attributes=["compares"],
            ),
        ],
        skip_unchanged_rows=False,
    )
    await reconciler.on_load(db_session, card)
    sql_log.clear()
    card.benefits_data = {1: {"compares": "better"}}
    await save_owner(db_session, card, [reconciler])

    assert sql_log.count("UPDATE card_benefit") == 1


async def test__after_update__new_id_gets_extra_data(
    db_session: AsyncSession,
    card: Card,
) -> None:
    card.benefit_ids = [1, 2, 3]
    card.benefits_data = {3: {"compares": "new"}}
    await save_owner(db_session, card, [card_relationships])

    loaded = await get_card(db_session, 10)
    assert loaded.benefit_ids == [1, 2, 3]
    assert loaded.benefits_data[3].compares == "new"
    assert loaded.benefits_data[1].compares == "better"


async def test__after_update__updates_extra_data_of_rows_added_in_same_lifetime(
    db_session: AsyncSession,
    benefits: list[Benefit],  # noqa: ARG001
) -> None:
    card = new_card()
    card.benefit_ids = [5]
    card.benefits_data = {5: {"compares": "a"}}
    await save_owner(db_session, card, [card_relationships])

    card.benefits_data = {5: {"compares": "b"}}
    await save_owner(db_session, card, [card_relationships])

    result = await db_session.execute(
        select(CardBenefit.compares).where(CardBenefit.card_id == card.id),
    )
    assert list(result.scalars().all()) == ["b"]


async def test__after_update__stops_at_first_failure(
    db_session: AsyncSession,
    card: Card,
) -> None:
    card.benefit_ids = [1, 2, 998, 999]
    with pytest.raises(PersistenceError) as exc_info:
        await save_owner(db_session, card, [card_relationships])
    assert exc_info.value.related_id == 998


# ---------------------------------------------------------------------------
# Scenario gating
# ---------------------------------------------------------------------------


@pytest.fixture
def create_only() -> JunctureReconciler:
    return JunctureReconciler.attach(
        Card,
        [
            RelationshipConfig(
                juncture_model=CardBenefit,
                related_model=Benefit,
                save_scenarios=["create"],
            ),
        ],
    )


async def test__scenario__save_scenarios_runs_in_listed_scenario(
    db_session: AsyncSession,
    benefits: list[Benefit],  # noqa: ARG001
    create_only: JunctureReconciler,
) -> None:
    card = new_card(scenario="create")
    card.benefit_ids = [1, 2]
    await save_owner(db_session, card, [create_only])
    assert await stored_benefit_ids(db_session, card.id) == [1, 2]


async def test__scenario__save_scenarios_skips_other_scenarios(
    db_session: AsyncSession,
    card: Card,
    create_only: JunctureReconciler,
    sql_log,  # noqa: ANN001
) -> None:
    await create_only.on_load(db_session, card)
    sql_log.clear()
    card.scenario = "update"
    card.benefit_ids = [3]
    await save_owner(db_session, card, [create_only])

    assert sql_log.count("INSERT INTO card_benefit") == 0
    assert sql_log.count("DELETE FROM card_benefit") == 0
    assert await stored_benefit_ids(db_session, 10) == [1, 2]


async def test__scenario__exclude_scenarios(
    db_session: AsyncSession,
    card: Card,
) -> None:
    """Card benefits are saved in every scenario except search."""
    card.scenario = "search"
    card.benefit_ids = []
    await save_owner(db_session, card, [card_relationships])
    assert await stored_benefit_ids(db_session, 10) == [1, 2]

    card.scenario = "update"
    await save_owner(db_session, card, [card_relationships])
    assert await stored_benefit_ids(db_session, 10) == []
