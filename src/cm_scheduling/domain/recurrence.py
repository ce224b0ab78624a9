"""Recurrence rules: a small RRULE subset expanded with python-dateutil.

Supported keys: FREQ (DAILY, WEEKLY, MONTHLY), INTERVAL, BYDAY (two-letter
weekday codes), BYMONTHDAY (1..31). An optional "RRULE:" prefix is accepted.
Anything else is rejected rather than silently ignored.
"""

from dataclasses import dataclass
from datetime import date, datetime

from dateutil import rrule

from src.cm_common.errors import InvalidRecurrenceRuleError

_FREQUENCIES = {
    "DAILY": rrule.DAILY,
    "WEEKLY": rrule.WEEKLY,
    "MONTHLY": rrule.MONTHLY,
}

_WEEKDAYS = {
    "MO": rrule.MO,
    "TU": rrule.TU,
    "WE": rrule.WE,
    "TH": rrule.TH,
    "FR": rrule.FR,
    "SA": rrule.SA,
    "SU": rrule.SU,
}

_DAY_NAMES = {
    "MO": "Monday",
    "TU": "Tuesday",
    "WE": "Wednesday",
    "TH": "Thursday",
    "FR": "Friday",
    "SA": "Saturday",
    "SU": "Sunday",
}

_UNITS = {"DAILY": "day", "WEEKLY": "week", "MONTHLY": "month"}

_SUPPORTED_KEYS = frozenset({"FREQ", "INTERVAL", "BYDAY", "BYMONTHDAY"})


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: str
    interval: int = 1
    by_day: tuple[str, ...] = ()
    by_month_day: tuple[int, ...] = ()

    @classmethod
    def parse(cls, raw: str) -> "RecurrenceRule":
        text = raw.strip()
        if text.upper().startswith("RRULE:"):
            text = text[len("RRULE:"):]
        if not text:
            raise InvalidRecurrenceRuleError("empty rule")

        parts: dict[str, str] = {}
        for chunk in text.split(";"):
            if not chunk:
                continue
            key, sep, value = chunk.partition("=")
            key = key.strip().upper()
            if not sep or not value.strip():
                raise InvalidRecurrenceRuleError(f"malformed part '{chunk}'")
            if key not in _SUPPORTED_KEYS:
                raise InvalidRecurrenceRuleError(f"unsupported key {key}")
            if key in parts:
                raise InvalidRecurrenceRuleError(f"duplicate key {key}")
            parts[key] = value.strip().upper()

        frequency = parts.get("FREQ")
        if frequency is None:
            raise InvalidRecurrenceRuleError("FREQ is required")
        if frequency not in _FREQUENCIES:
            raise InvalidRecurrenceRuleError(f"unsupported FREQ {frequency}")

        interval = 1
        if "INTERVAL" in parts:
            try:
                interval = int(parts["INTERVAL"])
            except ValueError:
                raise InvalidRecurrenceRuleError(
                    f"INTERVAL must be an integer, got {parts['INTERVAL']}"
                ) from None
            if interval < 1:
                raise InvalidRecurrenceRuleError(f"INTERVAL must be >= 1, got {interval}")

        by_day: tuple[str, ...] = ()
        if "BYDAY" in parts:
            codes = [code.strip() for code in parts["BYDAY"].split(",")]
            unknown = [code for code in codes if code not in _WEEKDAYS]
            if unknown:
                raise InvalidRecurrenceRuleError(f"unknown BYDAY code(s) {','.join(unknown)}")
            by_day = tuple(dict.fromkeys(codes))

        by_month_day: tuple[int, ...] = ()
        if "BYMONTHDAY" in parts:
            try:
                days = [int(d) for d in parts["BYMONTHDAY"].split(",")]
            except ValueError:
                raise InvalidRecurrenceRuleError(
                    f"BYMONTHDAY must be integers, got {parts['BYMONTHDAY']}"
                ) from None
            if any(not 1 <= d <= 31 for d in days):
                raise InvalidRecurrenceRuleError("BYMONTHDAY must be within 1..31")
            by_month_day = tuple(dict.fromkeys(days))

        return cls(frequency, interval, by_day, by_month_day)

    def to_string(self) -> str:
        parts = [f"FREQ={self.frequency}"]
        if self.interval != 1:
            parts.append(f"INTERVAL={self.interval}")
        if self.by_day:
            parts.append("BYDAY=" + ",".join(self.by_day))
        if self.by_month_day:
            parts.append("BYMONTHDAY=" + ",".join(str(d) for d in self.by_month_day))
        return ";".join(parts)

    def describe(self) -> str:
        """Human-readable text, e.g. 'Every 2 weeks on Monday, Thursday'."""
        unit = _UNITS[self.frequency]
        text = f"Every {unit}" if self.interval == 1 else f"Every {self.interval} {unit}s"
        if self.by_day:
            text += " on " + ", ".join(_DAY_NAMES[code] for code in self.by_day)
        if self.by_month_day:
            text += " on day " + ", ".join(str(d) for d in self.by_month_day)
        return text

    def occurrences(self, start: date, end: date, anchor: date | None = None) -> list[date]:
        """Dates produced by the rule within [start, end], both inclusive.

        `anchor` is the rule's DTSTART; INTERVAL counts from it, so passing the
        series start date keeps biweekly series aligned however the window moves.
        """
        if end < start:
            return []
        dtstart = datetime.combine(anchor or start, datetime.min.time())
        kwargs: dict[str, object] = {"dtstart": dtstart, "interval": self.interval}
        if self.by_day:
            kwargs["byweekday"] = [_WEEKDAYS[code] for code in self.by_day]
        if self.by_month_day:
            kwargs["bymonthday"] = list(self.by_month_day)
        rule = rrule.rrule(_FREQUENCIES[self.frequency], **kwargs)  # type: ignore[arg-type]
        window_start = datetime.combine(start, datetime.min.time())
        window_end = datetime.combine(end, datetime.min.time())
        return [dt.date() for dt in rule.between(window_start, window_end, inc=True)]


def build_rule(
    frequency: str,
    interval: int = 1,
    by_day: list[str] | None = None,
    by_month_day: int | None = None,
) -> str:
    """Assemble a rule string from form fields and validate it."""
    parts = [f"FREQ={frequency.upper()}"]
    if interval != 1:
        parts.append(f"INTERVAL={interval}")
    if by_day:
        parts.append("BYDAY=" + ",".join(code.upper() for code in by_day))
    if by_month_day is not None:
        parts.append(f"BYMONTHDAY={by_month_day}")
    return RecurrenceRule.parse(";".join(parts)).to_string()
