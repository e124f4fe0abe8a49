"""
Tests for style.py — MarkdownV2 formatting helpers.

Covers:
  - esc(): all MarkdownV2 special characters are escaped
  - welcome() / help_text(): return non-empty strings with required keywords
  - result_card(): prices, sources, "Unknown" prices hidden
  - outcome_card(): dispatches on outcome type
  - history_page(): empty state, numbering, whole cards plus a "+N more" line
  - _truncate(): never leaves a dangling escape or an open entity
"""
from __future__ import annotations

import style
from outcomes import Failure, Notice, Success, WebSource
from result_store import HistoryEntry


def _result(**kwargs) -> Success:
    fields = dict(
        product_name="Sony WH-1000XM4",
        description="Wireless headphones.",
        average_sale_price="$250 - $300 USD",
        resell_price="$150 - $200 USD",
    )
    fields.update(kwargs)
    return Success(**fields)


# ── esc() ─────────────────────────────────────────────────────────────────────

class TestEsc:
    MDV2_SPECIALS = r"\_*[]()~`>#+-=|{}.!"

    def test_all_special_characters_escaped(self):
        for ch in self.MDV2_SPECIALS:
            escaped = style.esc(ch)
            assert escaped == f"\\{ch}", f"Character {ch!r} not escaped"

    def test_plain_text_unchanged(self):
        assert style.esc("Hello World") == "Hello World"

    def test_price_text(self):
        result = style.esc("$250 - $300 (new!)")
        assert "$" in result and "\\$" not in result
        assert "\\-" in result
        assert "\\(" in result
        assert "\\!" in result


# ── Static screens ────────────────────────────────────────────────────────────

class TestStaticScreens:
    def test_welcome(self):
        text = style.welcome()
        assert "RESELL LENS" in text
        assert "photo" in text

    def test_help_lists_commands(self):
        text = style.help_text()
        for cmd in ("/start", "/help", "/history", "/clear\\_history"):
            assert cmd in text


# ── Outcome cards ─────────────────────────────────────────────────────────────

class TestResultCard:
    def test_contains_name_and_prices(self):
        card = style.result_card(_result())
        assert "Sony WH\\-1000XM4" in card
        assert "$250 \\- $300 USD" in card
        assert "$150 \\- $200 USD" in card

    def test_unknown_prices_hidden(self):
        card = style.result_card(_result(average_sale_price="Unknown", resell_price="unknown"))
        assert "Pricing Information" not in card

    def test_sources_listed_and_capped(self):
        sources = tuple(WebSource(f"https://shop{i}.example/item", f"Shop {i}") for i in range(7))
        card = style.result_card(_result(sources=sources))
        assert "Shop 0" in card
        assert "Shop 4" in card
        assert "Shop 5" not in card
        assert "\\+2 more" in card

    def test_source_without_title_uses_uri(self):
        card = style.result_card(_result(sources=(WebSource("https://ebay.com/itm/1"),)))
        assert "(https://ebay.com/itm/1)" in card

    def test_blank_name_falls_back(self):
        assert "Unnamed Product" in style.result_card(_result(product_name=""))


class TestOutcomeCard:
    def test_success(self):
        assert "Best identified match" in style.outcome_card(_result())

    def test_notice(self):
        card = style.outcome_card(Notice("AI analysis resulted in empty content."))
        assert "Notice" in card
        assert "empty content\\." in card

    def test_failure(self):
        card = style.outcome_card(Failure("Failed to communicate with the analysis server."))
        assert "Analysis Failed" in card


# ── History ───────────────────────────────────────────────────────────────────

def _entry(i: int) -> HistoryEntry:
    return HistoryEntry(
        user_id="u1",
        product_name=f"Item {i}",
        description="x",
        average_sale_price="$10",
        resell_price="Unknown",
        timestamp=1_700_000_000_000 + i,
    )


def _well_formed(text: str) -> bool:
    """No dangling escape and every bold / italic marker closed."""
    stars = underscores = 0
    escaped = False
    for ch in text:
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == "*":
            stars += 1
        elif ch == "_":
            underscores += 1
    return not escaped and stars % 2 == 0 and underscores % 2 == 0


class TestHistory:
    def test_empty(self):
        assert "No saved analysis results" in style.history_page([])

    def test_entries_numbered(self):
        page = style.history_page([_entry(1), _entry(2)])
        assert "*1\\.*  Item 1" in page
        assert "*2\\.*  Item 2" in page
        assert "new $10" in page
        assert "used" not in page
        assert "more_" not in page

    def test_long_history_keeps_whole_cards(self):
        page = style.history_page([_entry(i) for i in range(200)])
        assert len(page) <= style.MAX_MESSAGE
        assert _well_formed(page)
        assert page.endswith(" more_")
        shown = page.count("_Saved ")
        assert f"_\\+{200 - shown} more_" in page

    def test_escaped_names_never_leave_a_dangling_escape(self):
        for width in range(40):
            entries = [
                HistoryEntry(
                    user_id="u1",
                    product_name=f"v1.{'.' * width}{i}",
                    description="x",
                    average_sale_price="$1.50",
                    resell_price="$0.75",
                    timestamp=i,
                )
                for i in range(121)
            ]
            page = style.history_page(entries)
            assert len(page) <= style.MAX_MESSAGE, width
            assert _well_formed(page), width
            assert "\\+" in page and page.endswith(" more_"), width

    def test_single_oversized_entry_is_cut_cleanly(self):
        huge = HistoryEntry(
            user_id="u1", product_name="." * 5000, description="x",
            average_sale_price="$1", resell_price="$1", timestamp=0,
        )
        page = style.history_page([huge, _entry(2)])
        assert len(page) <= style.MAX_MESSAGE
        assert _well_formed(page)
        assert "*1\\.*" in page
        assert "_\\+1 more_" in page

    def test_history_cleared_plural(self):
        assert "entry" in style.history_cleared(1)
        assert "entries" in style.history_cleared(3)

    def test_timestamp_format(self):
        assert style.fmt_timestamp(0) == "1970-01-01 00:00 UTC"


class TestTruncate:
    def test_short_text_untouched(self):
        assert style._truncate("abc", 10) == "abc"

    def test_cut_never_splits_an_escape(self):
        text = style.esc("." * 100)
        for limit in range(20, 40):
            cut = style._truncate(text, limit)
            assert len(cut) <= limit
            assert _well_formed(cut)
            assert cut.endswith("\\.\\.\\.")

    def test_partial_bold_line_dropped(self):
        text = "first line\n*" + "b" * 50 + "*"
        assert style._truncate(text, 30) == "first line\n\\.\\.\\."

    def test_oversized_description_card(self):
        card = style.result_card(_result(description="." * 5000))
        assert len(card) <= style.MAX_MESSAGE
        assert _well_formed(card)


class TestDeleteMessages:
    def test_entry_deleted_escapes_name(self):
        assert "Sony WH\\-1000XM4" in style.entry_deleted("Sony WH-1000XM4")

    def test_missing_names_number(self):
        assert "*7*" in style.delete_missing(7)

    def test_help_mentions_delete(self):
        assert "/delete" in style.help_text()
