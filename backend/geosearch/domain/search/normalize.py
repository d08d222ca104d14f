"""Text normalization shared by index writes and queries."""

from __future__ import annotations

from typing import Optional

MIN_TOKEN_LEN = 2


def normalize(text: Optional[str]) -> str:
	"""Lowercase, trim and collapse whitespace runs to a single space."""

	if not text:
		return ""
	return " ".join(text.lower().split())


def tokenize(text: Optional[str]) -> list[str]:
	return normalize(text).split(" ") if text and text.strip() else []


def leading_prefixes(value: str, limit: int) -> list[str]:
	"""Return ``value[:1] .. value[:min(len, limit)]``."""

	return [value[:length] for length in range(1, min(len(value), limit) + 1)]


def name_prefixes(name: Optional[str], limit: int, *, min_token_len: int = MIN_TOKEN_LEN) -> set[str]:
	"""Every prefix a name occupies: its full-name prefixes plus word prefixes.

	Words shorter than ``min_token_len`` only contribute through the full name.
	"""

	normalized = normalize(name)
	if not normalized or limit <= 0:
		return set()
	prefixes = set(leading_prefixes(normalized, limit))
	for token in tokenize(normalized):
		if len(token) < min_token_len:
			continue
		prefixes.update(leading_prefixes(token, limit))
	return prefixes


def matches_word_start(name: str, query: str) -> bool:
	"""True when ``query`` occurs in ``name`` at the start of the name or of a word."""

	if not query:
		return True
	normalized = normalize(name)
	return normalized.startswith(query) or f" {query}" in normalized


def split_qualifiers(query: Optional[str]) -> tuple[str, list[str]]:
	"""Split ``"portland, or, us"`` into ``("portland", ["or", "us"])``."""

	parts = [normalize(part) for part in (query or "").split(",")]
	head = parts[0] if parts else ""
	return head, [part for part in parts[1:] if part]
