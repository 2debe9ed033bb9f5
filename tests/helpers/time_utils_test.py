from datetime import timedelta
from decimal import Decimal
from random import Random

from domain.base_types import Direction
from tests.helpers.time_utils import TimeGenerator, buy, make_transaction, sell


def test_time_generator_advances_with_bounded_gaps() -> None:
    gen = TimeGenerator(_rng=Random(42))

    first = gen()
    second = gen()
    third = gen()

    assert first < second < third
    for earlier, later in ((first, second), (second, third)):
        assert timedelta(seconds=5) <= later - earlier <= timedelta(seconds=60)


def test_reset_replays_the_same_sequence() -> None:
    gen = TimeGenerator(_rng=Random(7), _seed=7)
    gen.reset()
    first_run = [gen() for _ in range(3)]

    gen.reset()
    second_run = [gen() for _ in range(3)]

    assert first_run == second_run


def test_make_transaction_uses_generator_and_unique_hashes() -> None:
    gen = TimeGenerator(_rng=Random(1))

    first = make_transaction(direction=Direction.IN, amount="1", ts_gen=gen)
    second = make_transaction(direction=Direction.IN, amount="1", ts_gen=gen)

    assert first.occurred_at < second.occurred_at
    assert first.tx_hash != second.tx_hash


def test_buy_and_sell_shortcuts() -> None:
    acquired = buy("10", "12.5")
    disposed = sell("4", "6")

    assert acquired.direction == Direction.IN
    assert acquired.cost_basis_usd == Decimal("12.5")
    assert disposed.direction == Direction.OUT
    assert disposed.fiat_value_usd == Decimal("6")


def test_default_generators_do_not_share_randomness() -> None:
    first_gen = TimeGenerator()
    second_gen = TimeGenerator()

    first_run = [first_gen() for _ in range(3)]
    second_run = [second_gen() for _ in range(3)]

    assert first_run == second_run
