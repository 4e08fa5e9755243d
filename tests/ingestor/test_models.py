"""Tests for ingestor data models."""

from datetime import UTC, datetime

import pytest

from polymarket_trade_indexer.decoder.models import MarketStatus
from polymarket_trade_indexer.ingestor.models import BlockInfo, GammaEvent, GammaMarket

CONDITION_ID = "0x" + "ab" * 32
QUESTION_ID = "0x" + "cd" * 32


def gamma_market_payload(**overrides) -> dict:
    data = {
        "slug": "will-it-rain",
        "question": "Will it rain tomorrow?",
        "conditionId": CONDITION_ID,
        "questionID": QUESTION_ID,
        "clobTokenIds": '["111", "222"]',
        "negRisk": False,
        "active": True,
        "closed": False,
    }
    data.update(overrides)
    return data


class TestBlockInfo:
    """Tests for BlockInfo model."""

    def test_timestamp_dt(self) -> None:
        info = BlockInfo(number=1, timestamp=1_700_000_000, hash="0x" + "ff" * 32)
        assert info.timestamp_dt == datetime.fromtimestamp(1_700_000_000, tz=UTC)

    def test_dict_round_trip(self) -> None:
        info = BlockInfo(number=5, timestamp=10, hash="0xabc")
        assert BlockInfo.from_dict(info.to_dict()) == info

    def test_frozen(self) -> None:
        info = BlockInfo(number=5, timestamp=10, hash="0xabc")
        with pytest.raises(AttributeError):
            info.number = 6  # type: ignore[misc]


class TestGammaMarket:
    """Tests for GammaMarket model."""

    def test_from_dict_with_json_string_token_ids(self) -> None:
        market = GammaMarket.from_dict(gamma_market_payload())

        assert market.slug == "will-it-rain"
        assert market.condition_id == CONDITION_ID
        assert market.question_id == QUESTION_ID
        assert market.clob_token_ids == ("111", "222")
        assert market.is_complete
        assert market.status == "active"

    def test_from_dict_with_list_token_ids(self) -> None:
        market = GammaMarket.from_dict(gamma_market_payload(clobTokenIds=[333, 444]))
        assert market.clob_token_ids == ("333", "444")

    def test_alternate_key_spellings(self) -> None:
        data = gamma_market_payload()
        data["questionId"] = data.pop("questionID")
        data["condition_id"] = data.pop("conditionId")

        market = GammaMarket.from_dict(data)
        assert market.question_id == QUESTION_ID
        assert market.condition_id == CONDITION_ID

    @pytest.mark.parametrize(
        "overrides",
        [
            {"clobTokenIds": "not json"},
            {"clobTokenIds": '["111"]'},
            {"questionID": None},
            {"conditionId": ""},
        ],
    )
    def test_incomplete(self, overrides: dict) -> None:
        assert not GammaMarket.from_dict(gamma_market_payload(**overrides)).is_complete

    @pytest.mark.parametrize(
        ("overrides", "status"),
        [
            ({"closed": True}, MarketStatus.CLOSED),
            ({"archived": True}, MarketStatus.CLOSED),
            ({"enableOrderBook": False}, MarketStatus.CLOSED),
            ({"acceptingOrders": False}, MarketStatus.CLOSED),
            ({"enableOrderBook": None, "acceptingOrders": None}, MarketStatus.ACTIVE),
        ],
    )
    def test_status(self, overrides: dict, status: MarketStatus) -> None:
        assert GammaMarket.from_dict(gamma_market_payload(**overrides)).status == status.value


class TestGammaEvent:
    """Tests for GammaEvent model."""

    def test_from_dict(self) -> None:
        event = GammaEvent.from_dict(
            {
                "slug": "weather",
                "title": "Weather",
                "negRisk": True,
                "markets": [gamma_market_payload(), "garbage"],
            }
        )

        assert event.slug == "weather"
        assert event.title == "Weather"
        assert event.description is None
        assert event.neg_risk is True
        assert len(event.markets) == 1

    def test_without_markets(self) -> None:
        assert GammaEvent.from_dict({"slug": "empty"}).markets == ()
