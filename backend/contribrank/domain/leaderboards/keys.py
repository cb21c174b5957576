"""Redis key layout for the ranking store."""

from __future__ import annotations

from typing import List

from contribrank.domain.contributions.models import ProviderSelector, Window


def zset_key(selector: ProviderSelector, window: Window) -> str:
	if selector is ProviderSelector.COMBINED:
		return f"lb:total:{window.value}"
	return f"lb:{selector.value}:{window.value}"


def all_zset_keys() -> List[str]:
	return [zset_key(selector, window) for window in Window for selector in ProviderSelector]


__all__ = ["all_zset_keys", "zset_key"]
