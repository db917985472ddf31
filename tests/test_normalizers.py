from datetime import datetime

from adasline.normalizers import (
    format_schedule_datetime,
    normalize_notes,
    normalize_scheduled,
    normalize_shop_name,
    translate_to_english,
)

# Wednesday
NOW = datetime(2025, 12, 10, 14, 0)


class TestNormalizeShopName:
    def test_alias(self):
        assert normalize_shop_name("auto sport") == "AutoSport"

    def test_strips_stacked_filler(self):
        assert normalize_shop_name("it's the auto sport") == "AutoSport"

    def test_spanish_alias(self):
        assert normalize_shop_name("centro de colisión") == "CCNM"

    def test_unknown_passes_through(self):
        assert normalize_shop_name("Miami Collision Pros") == "Miami Collision Pros"

    def test_filler_only_rejected(self):
        assert normalize_shop_name("is x") is None

    def test_none(self):
        assert normalize_shop_name(None) is None


class TestNormalizeScheduled:
    def test_tomorrow_with_time(self):
        assert normalize_scheduled("tomorrow at 10 AM", now=NOW) == "Thursday, December 11, 2025 at 10:00 AM"

    def test_weekday_with_bare_afternoon_hour(self):
        assert normalize_scheduled("friday at 2", now=NOW) == "Friday, December 12, 2025 at 2:00 PM"

    def test_missing_time_defaults_to_nine(self):
        assert normalize_scheduled("today", now=NOW) == "Wednesday, December 10, 2025 at 9:00 AM"

    def test_spanish(self):
        result = normalize_scheduled("mañana a las 3 de la tarde", now=NOW)
        assert result == "Thursday, December 11, 2025 at 3:00 PM"

    def test_same_weekday_is_next_week(self):
        assert normalize_scheduled("wednesday at 11 am", now=NOW) == "Wednesday, December 17, 2025 at 11:00 AM"

    def test_past_month_day_rolls_to_next_year(self):
        assert normalize_scheduled("december 5 at 9 am", now=NOW) == "Saturday, December 5, 2026 at 9:00 AM"

    def test_empty_is_tbd(self):
        assert normalize_scheduled("") == "TBD"
        assert normalize_scheduled(None) == "TBD"


class TestFormatScheduleDatetime:
    def test_iso_date(self):
        assert format_schedule_datetime("2025-12-11", "10:00 AM") == "12/11/2025 10:00 AM"

    def test_datetime_objects(self):
        assert format_schedule_datetime(datetime(2025, 12, 11), datetime(1899, 12, 30, 14, 30)) == "12/11/2025 2:30 PM"

    def test_nothing(self):
        assert format_schedule_datetime(None, None) == "unscheduled"


class TestNormalizeNotes:
    def test_wraps_plain_notes(self):
        assert normalize_notes("front camera replaced", "Carlos") == "Caller: Carlos. Notes: front camera replaced."

    def test_unwraps_nested_wrappers(self):
        nested = "Caller: Carlos. Notes: Caller: Carlos. Notes: front camera replaced."
        assert normalize_notes(nested, "Carlos") == "Caller: Carlos. Notes: front camera replaced."

    def test_idempotent(self):
        once = normalize_notes("front camera replaced", "Carlos")
        assert normalize_notes(once, "Carlos") == once

    def test_unknown_caller_and_no_notes(self):
        assert normalize_notes(None, None) == "Caller: Unknown. Notes: none."

    def test_no_answer(self):
        assert normalize_notes("no", "Ana") == "Caller: Ana. Notes: none."

    def test_schedule_text_is_not_notes(self):
        assert normalize_notes("tomorrow at 9", "Ana") == "Caller: Ana. Notes: none."

    def test_spanish_translated(self):
        result = normalize_notes("parabrisas nuevo y cámara frontal", "Luis")
        assert result == "Caller: Luis. Notes: new windshield and front camera."

    def test_foreign_script_noise(self):
        assert normalize_notes("Привет мир", "Luis") == "Caller: Luis. Notes: none."


class TestTranslateToEnglish:
    def test_reason_phrase(self):
        assert translate_to_english("el cliente canceló") == "Customer cancelled"

    def test_english_untouched(self):
        assert translate_to_english("shop asked to move it") == "shop asked to move it"

    def test_none(self):
        assert translate_to_english(None) is None
