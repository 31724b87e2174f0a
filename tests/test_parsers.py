from __future__ import annotations

import unittest
from datetime import date

from flatbot.utils.parsers import (
    capitalize_name,
    is_skip,
    month_label,
    parse_ai_json,
    parse_amount,
    parse_ledger_amount,
    parse_yes_no,
    quarter_months,
    quarter_of,
    split_manual_entry,
)


class ParseAmountTest(unittest.TestCase):
    def test_accepts_common_forms(self) -> None:
        self.assertEqual(parse_amount("500"), 500.0)
        self.assertEqual(parse_amount(" 1,250.50 "), 1250.5)
        self.assertEqual(parse_amount("₹ 2,000"), 2000.0)
        self.assertEqual(parse_amount("-30"), -30.0)

    def test_rejects_non_numbers(self) -> None:
        self.assertIsNone(parse_amount("five hundred"))
        self.assertIsNone(parse_amount(""))
        self.assertIsNone(parse_amount("nan"))
        self.assertIsNone(parse_amount("inf"))

    def test_ledger_amount_defaults_to_zero(self) -> None:
        self.assertEqual(parse_ledger_amount("₹1,23,456"), 123456.0)
        self.assertEqual(parse_ledger_amount(""), 0.0)
        self.assertEqual(parse_ledger_amount("n/a"), 0.0)


class ManualEntryTest(unittest.TestCase):
    def test_three_trimmed_tokens(self) -> None:
        self.assertEqual(
            split_manual_entry("500,  Maintenance , Lobby cleaning "),
            ("500", "Maintenance", "Lobby cleaning"),
        )

    def test_wrong_token_count(self) -> None:
        self.assertIsNone(split_manual_entry("500, Maintenance"))
        self.assertIsNone(split_manual_entry("1,000, Maintenance, Lobby"))


class AIJsonTest(unittest.TestCase):
    def test_fenced_reply(self) -> None:
        reply = '```json\n{"amount": 120, "confidence": 0.8}\n```'
        self.assertEqual(parse_ai_json(reply), {"amount": 120, "confidence": 0.8})

    def test_non_object_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            parse_ai_json("[1, 2]")
        with self.assertRaises(ValueError):
            parse_ai_json("Sorry, I cannot read this receipt.")


class TextHelpersTest(unittest.TestCase):
    def test_capitalize_name(self) -> None:
        self.assertEqual(capitalize_name("rAVI   kumar"), "Ravi Kumar")

    def test_keywords_are_case_insensitive(self) -> None:
        self.assertTrue(is_skip(" SKIP "))
        self.assertIs(parse_yes_no("Yes"), True)
        self.assertIs(parse_yes_no("NO"), False)
        self.assertIsNone(parse_yes_no("y"))


class PeriodHelpersTest(unittest.TestCase):
    def test_month_label(self) -> None:
        self.assertEqual(month_label(date(2026, 10, 16)), "October 2026")

    def test_quarter(self) -> None:
        self.assertEqual(quarter_of(date(2026, 10, 16)), 4)
        self.assertEqual(
            quarter_months(date(2026, 5, 31)),
            [date(2026, 4, 1), date(2026, 5, 1), date(2026, 6, 1)],
        )


if __name__ == "__main__":
    unittest.main()
