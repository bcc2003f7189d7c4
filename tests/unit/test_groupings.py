"""
Unit tests for the label, sender and subscription grouping strategies.
"""

import pytest

from mailclean.index.groupings import (
    SUBSCRIPTION_KEYWORDS,
    groups_from_senders,
    label_strategy,
    sender_strategy,
    subscription_query,
    subscription_strategy,
)
from mailclean.index.query_index import QueryIndex
from mailclean.models import Group, GroupSummary, MessageFilter


def summary(identifier, count, **metadata):
    return GroupSummary(identifier=identifier, metadata=metadata, count=count, ids=[f"x{i}" for i in range(count)])


class TestLabelStrategy:
    """Test cases for label grouping."""

    @pytest.mark.asyncio
    async def test_discovers_labels(self, gmail_client, fetcher, mutator, cache, fake_gmail):
        fake_gmail.labels_list = [
            {"id": "CATEGORY_SOCIAL", "name": "CATEGORY_SOCIAL", "type": "system"},
            {"id": "Label_1", "name": "Receipts", "type": "user"},
            {"id": "Label_2", "name": "Empty", "type": "user"},
        ]
        fake_gmail.add_messages(["s1", "s2"], label_ids=["CATEGORY_SOCIAL"])
        fake_gmail.add_messages(["r1", "r2", "r3"], label_ids=["Label_1"])
        strategy = label_strategy(gmail_client)
        index = QueryIndex(strategy, fetcher, mutator, cache)

        summaries = await index.discover_groups(fake_gmail)

        assert [s.identifier for s in summaries] == ["Label_1", "CATEGORY_SOCIAL"]
        assert summaries[1].metadata == {"labelName": "Social", "originalName": "CATEGORY_SOCIAL"}
        assert strategy.format_option(summaries[1]) == "Social (2 emails)"

    def test_query_is_label_scoped(self, gmail_client):
        strategy = label_strategy(gmail_client)
        assert strategy.query_builder(Group("Label_1")) == MessageFilter(label_ids=("Label_1",))
        assert strategy.table_title(None) == "Labeled Emails"


class TestSenderStrategy:
    """Test cases for sender grouping."""

    @pytest.mark.asyncio
    async def test_groups_search_hits_by_sender(self, gmail_client, fetcher, mutator, cache, fake_gmail):
        fake_gmail.add_messages(["m1", "m2", "m3", "m4", "m5"], query="in:anywhere invoice")
        fake_gmail.add_headers("m1", From="Shop <Billing@Shop.example>")
        fake_gmail.add_headers("m2", From="Bank <alerts@bank.example>")
        fake_gmail.add_headers("m3", From="billing@shop.example")
        fake_gmail.add_headers("m4", From="undisclosed-recipients")
        fake_gmail.add_messages(["m1", "m3", "m9"], query="in:anywhere from:billing@shop.example")
        fake_gmail.add_messages(["m2"], query="in:anywhere from:alerts@bank.example")
        strategy = sender_strategy(gmail_client, fetcher, " {invoice} ")
        index = QueryIndex(strategy, fetcher, mutator, cache)

        summaries = await index.discover_groups(fake_gmail)

        assert [(s.identifier, s.count) for s in summaries] == [
            ("billing@shop.example", 3),
            ("alerts@bank.example", 1),
        ]
        assert strategy.format_option(summaries[0]) == "billing@shop.example (3 emails)"
        assert strategy.table_title(summaries[0]) == "Email Subjects"

    @pytest.mark.asyncio
    async def test_empty_term_makes_no_calls(self, gmail_client, fetcher, fake_gmail):
        strategy = sender_strategy(gmail_client, fetcher, " <> ")

        assert await strategy.candidates(fake_gmail) == []
        assert fake_gmail.list_calls == []

    @pytest.mark.asyncio
    async def test_no_hits(self, gmail_client, fetcher, fake_gmail):
        strategy = sender_strategy(gmail_client, fetcher, "nothing")

        assert await strategy.candidates(fake_gmail) == []
        assert fake_gmail.get_calls == []

    def test_sender_query(self, gmail_client, fetcher):
        strategy = sender_strategy(gmail_client, fetcher, "x")
        assert strategy.query_builder(Group("a@b.example")) == "in:anywhere from:a@b.example"


class TestSubscriptionStrategy:
    """Test cases for subscription grouping."""

    def test_query_covers_whole_year(self):
        query = subscription_query(2023)
        assert query.startswith("after:2023/01/01 before:2024/01/01 (")
        for keyword in SUBSCRIPTION_KEYWORDS:
            assert f'"{keyword}"' in query

    @pytest.mark.asyncio
    async def test_only_senders_with_http_unsubscribe(self, gmail_client, fetcher, fake_gmail):
        fake_gmail.add_messages(["n1", "n2", "n3", "n4"], query=subscription_query(2023))
        fake_gmail.add_headers(
            "n1", From='"Shop News" <news@shop.example>',
            List_Unsubscribe="<mailto:u@shop.example>, <https://shop.example/u?id=1>",
        )
        fake_gmail.add_headers("n2", From="Club <club@club.example>", List_Unsubscribe="<mailto:u@club.example>")
        fake_gmail.add_headers("n3", From="Friend <friend@mail.example>")
        fake_gmail.add_headers(
            "n4", From="Shop News <news@shop.example>",
            List_Unsubscribe="<https://shop.example/u?id=2>",
        )
        strategy = subscription_strategy(gmail_client, fetcher, 2023)

        candidates = await strategy.candidates(fake_gmail)

        assert candidates == [
            Group("news@shop.example", {"name": "Shop News", "unsubscribeLink": "https://shop.example/u?id=1"}),
        ]
        calls = [c for c in fake_gmail.list_calls if c.get("q") == subscription_query(2023)]
        assert calls

    def test_unsubscribed_suffix_and_title(self, gmail_client, fetcher):
        marked = set()
        strategy = subscription_strategy(gmail_client, fetcher, 2023, marked)
        s = summary("news@shop.example", 4, name="Shop News")

        assert strategy.format_option(s) == "Shop News (4 emails)"
        marked.add("news@shop.example")
        assert strategy.format_option(s) == "Shop News (4 emails) (unsubscribed)"
        assert strategy.table_title(s) == "Emails from Shop News"

    @pytest.mark.parametrize("year", [1969, 10000, "soon"])
    def test_invalid_year(self, gmail_client, fetcher, year):
        with pytest.raises(ValueError):
            subscription_strategy(gmail_client, fetcher, year)


class TestGroupsFromSenders:
    """Test cases for groups_from_senders."""

    def test_first_seen_order_and_dedup(self):
        headers = [
            {"From": "B <b@x.example>"},
            {"From": "A <a@x.example>"},
            {"From": "b@X.example"},
            {"Subject": "no sender"},
        ]
        assert [g.identifier for g in groups_from_senders(headers)] == ["b@x.example", "a@x.example"]

    def test_display_name_falls_back_to_address(self):
        (group,) = groups_from_senders([{"From": "solo@x.example"}])
        assert group.metadata == {"name": "solo@x.example"}
