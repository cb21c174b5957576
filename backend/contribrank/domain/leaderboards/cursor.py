"""Opaque page cursors.

A cursor remembers the last member served and the offset after it. The next
page is anchored on that member rather than on the offset alone, so score
changes of unrelated users cannot shift entries across the page boundary.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass

from contribrank.domain.contributions.errors import ContributionUsageError


@dataclass(frozen=True, slots=True)
class PageCursor:
	offset: int
	score: int
	user_id: str


def encode_cursor(cursor: PageCursor) -> str:
	raw = json.dumps({"o": cursor.offset, "s": cursor.score, "u": cursor.user_id}, separators=(",", ":"))
	return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(value: str) -> PageCursor:
	padded = value + "=" * (-len(value) % 4)
	try:
		data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
		cursor = PageCursor(offset=int(data["o"]), score=int(data["s"]), user_id=str(data["u"]))
	except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as exc:
		raise ContributionUsageError("invalid cursor") from exc
	if cursor.offset < 0 or not cursor.user_id:
		raise ContributionUsageError("invalid cursor")
	return cursor


__all__ = ["PageCursor", "decode_cursor", "encode_cursor"]
