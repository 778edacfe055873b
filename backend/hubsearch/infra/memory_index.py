"""In-memory search backend used by tests and local development.

Evaluates the subset of the Elasticsearch query DSL emitted by
`hubsearch.domain.search.compiler`: bool/multi_match/match_phrase/range/term/
terms/ids/match_all/more_like_this queries, field sorts, terms and daily
date_histogram aggregations, and simple highlighting. Scoring is a small
tf/length-norm model; it is deterministic but does not reproduce Lucene scores.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import math
import re
import time
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from itertools import product
from typing import Any, Iterable, Mapping, Optional, Sequence

from hubsearch.domain.search import exceptions

_LOG = logging.getLogger(__name__)
_TOKEN_RE = re.compile(r"\w+", re.UNICODE)
_DATE_MATH_RE = re.compile(r"^(?P<anchor>now|.+?\|\|)(?P<ops>(?:[+-]\d+[yMwdhms])*)(?:/(?P<round>[yMwdhms]))?$")
_MAX_PHRASE_COMBINATIONS = 256


def tokenize(value: Any) -> list[str]:
	if value is None:
		return []
	if isinstance(value, (list, tuple)):
		tokens: list[str] = []
		for item in value:
			tokens.extend(tokenize(item))
		return tokens
	return [token.lower() for token in _TOKEN_RE.findall(str(value))]


def _edit_distance(a: str, b: str, *, limit: int) -> int:
	if abs(len(a) - len(b)) > limit:
		return limit + 1
	previous = list(range(len(b) + 1))
	for i, char_a in enumerate(a, start=1):
		current = [i]
		for j, char_b in enumerate(b, start=1):
			cost = 0 if char_a == char_b else 1
			current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
		previous = current
	return previous[-1]


def _auto_fuzziness(term: str) -> int:
	if len(term) <= 2:
		return 0
	if len(term) <= 5:
		return 1
	return 2


def _term_matches(term: str, token: str, *, fuzzy: bool) -> bool:
	if term == token:
		return True
	if not fuzzy:
		return False
	allowed = _auto_fuzziness(term)
	return allowed > 0 and _edit_distance(term, token, limit=allowed) <= allowed


def _resolve_field(document: Mapping[str, Any], path: str) -> Any:
	if path.endswith(".keyword"):
		path = path[: -len(".keyword")]
	current: Any = document
	for part in path.split("."):
		if isinstance(current, Mapping):
			current = current.get(part)
		else:
			return None
	return current


def _as_list(value: Any) -> list[Any]:
	if value is None:
		return []
	if isinstance(value, (list, tuple, set)):
		return list(value)
	return [value]


def _split_field_boost(spec: str) -> tuple[str, float]:
	if "^" in spec:
		name, boost = spec.split("^", 1)
		return name, float(boost)
	return spec, 1.0


def _parse_datetime(value: Any) -> Optional[datetime]:
	if isinstance(value, datetime):
		parsed = value
	elif isinstance(value, date):
		parsed = datetime(value.year, value.month, value.day)
	elif isinstance(value, str):
		text = value.strip()
		if text.endswith("Z"):
			text = text[:-1] + "+00:00"
		try:
			parsed = datetime.fromisoformat(text)
		except ValueError:
			return None
	else:
		return None
	if parsed.tzinfo is None:
		parsed = parsed.replace(tzinfo=timezone.utc)
	return parsed.astimezone(timezone.utc)


def _round_datetime(value: datetime, unit: str, *, up: bool) -> datetime:
	if unit == "d":
		floor = value.replace(hour=0, minute=0, second=0, microsecond=0)
		span = timedelta(days=1)
	elif unit == "h":
		floor = value.replace(minute=0, second=0, microsecond=0)
		span = timedelta(hours=1)
	elif unit == "m":
		floor = value.replace(second=0, microsecond=0)
		span = timedelta(minutes=1)
	elif unit == "s":
		floor = value.replace(microsecond=0)
		span = timedelta(seconds=1)
	elif unit == "w":
		floor = (value - timedelta(days=value.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
		span = timedelta(weeks=1)
	elif unit == "M":
		floor = value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
		next_month = (floor + timedelta(days=32)).replace(day=1)
		span = next_month - floor
	else:
		floor = value.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
		span = floor.replace(year=floor.year + 1) - floor
	if up:
		return floor + span - timedelta(microseconds=1)
	return floor


def _shift(value: datetime, amount: int, unit: str) -> datetime:
	if unit == "y":
		return value.replace(year=value.year + amount)
	if unit == "M":
		month_index = value.month - 1 + amount
		return value.replace(year=value.year + month_index // 12, month=month_index % 12 + 1)
	deltas = {"w": timedelta(weeks=1), "d": timedelta(days=1), "h": timedelta(hours=1), "m": timedelta(minutes=1), "s": timedelta(seconds=1)}
	return value + deltas[unit] * amount


def resolve_date_bound(expr: Any, *, now: datetime, round_up: bool) -> Optional[datetime]:
	"""Evaluate an Elasticsearch date-math expression (`now-7d/d`, `2023-12-31||/d`)."""

	if not isinstance(expr, str):
		return _parse_datetime(expr)
	match = _DATE_MATH_RE.match(expr.strip())
	if match is None:
		return _parse_datetime(expr)
	anchor = match.group("anchor")
	base = now if anchor == "now" else _parse_datetime(anchor[:-2])
	if base is None:
		return None
	for sign, amount, unit in re.findall(r"([+-])(\d+)([yMwdhms])", match.group("ops") or ""):
		base = _shift(base, int(amount) * (1 if sign == "+" else -1), unit)
	if match.group("round"):
		base = _round_datetime(base, match.group("round"), up=round_up)
	return base


class MemorySearchBackend:
	"""A process-local stand-in for the search cluster."""

	def __init__(self, *, clock=None) -> None:
		self._lock = asyncio.Lock()
		self._indices: dict[str, dict[str, dict[str, Any]]] = {}
		self._templates: dict[str, dict[str, Any]] = {}
		self._clock = clock or (lambda: datetime.now(timezone.utc))
		self.fail_with: Optional[BaseException] = None
		self.search_calls = 0

	def reset(self) -> None:
		self._indices.clear()
		self._templates.clear()
		self.fail_with = None
		self.search_calls = 0

	def documents(self, index: str) -> dict[str, dict[str, Any]]:
		return copy.deepcopy(self._indices.get(index, {}))

	def templates(self) -> dict[str, dict[str, Any]]:
		return dict(self._templates)

	def _check_available(self) -> None:
		if self.fail_with is not None:
			raise exceptions.BackendError("search_unavailable") from self.fail_with

	async def ping(self) -> bool:
		return self.fail_with is None

	async def put_index_template(self, name: str, body: Mapping[str, Any]) -> None:
		self._check_available()
		self._templates[name] = dict(body)

	async def bulk_upsert(self, *, index: str, documents: Sequence[Mapping[str, Any]], refresh: bool = True) -> int:
		self._check_available()
		async with self._lock:
			stored = self._indices.setdefault(index, {})
			for document in documents:
				doc_id = str(document["id"])
				stored[doc_id] = copy.deepcopy(dict(document))
		_LOG.info("memory_index.bulk_upsert", extra={"index": index, "count": len(documents)})
		return len(documents)

	async def search(self, *, indices: Sequence[str], body: Mapping[str, Any]) -> dict[str, Any]:
		self._check_available()
		self.search_calls += 1
		started = time.perf_counter()
		now = self._clock()
		async with self._lock:
			corpus = [
				(index, doc_id, document)
				for index in indices
				for doc_id, document in sorted(self._indices.get(index, {}).items())
			]
		evaluator = _Evaluator(corpus, now=now)
		query = body.get("query") or {"match_all": {}}
		matched: list[tuple[str, str, dict[str, Any], float]] = []
		for index, doc_id, document in corpus:
			score = evaluator.score(query, index, doc_id, document)
			if score is not None:
				matched.append((index, doc_id, document, score))

		sort_spec = list(body.get("sort") or [{"_score": {"order": "desc"}}])
		matched.sort(key=lambda item: item[1])
		for entry in reversed(sort_spec):
			matched = _apply_sort(matched, entry)
		score_first = _sort_field(sort_spec[0]) == "_score" if sort_spec else True

		offset = int(body.get("from") or 0)
		size = int(body["size"]) if body.get("size") is not None else 10
		page = matched[offset : offset + size]
		terms = evaluator.highlight_terms(query)
		highlight_spec = body.get("highlight") or {}
		hits = []
		for index, doc_id, document, score in page:
			hit: dict[str, Any] = {
				"_index": index,
				"_id": doc_id,
				"_score": round(score, 6) if score_first else None,
				"_source": copy.deepcopy(document),
			}
			highlight = _highlight(document, highlight_spec, terms)
			if highlight:
				hit["highlight"] = highlight
			hits.append(hit)

		response: dict[str, Any] = {
			"took": int((time.perf_counter() - started) * 1000),
			"hits": {"total": {"value": len(matched), "relation": "eq"}, "hits": hits},
		}
		aggs = body.get("aggs") or body.get("aggregations")
		if aggs:
			response["aggregations"] = {
				name: _aggregate(spec, [(index, document) for index, _, document, _ in matched])
				for name, spec in aggs.items()
			}
		return response


class _Evaluator:
	def __init__(self, corpus: Sequence[tuple[str, str, dict[str, Any]]], *, now: datetime) -> None:
		self._corpus = corpus
		self._now = now

	def score(self, query: Mapping[str, Any], index: str, doc_id: str, document: Mapping[str, Any]) -> Optional[float]:
		"""Return the score of a matching document, or None when it does not match."""

		(kind, spec), = query.items()
		handler = getattr(self, f"_q_{kind}", None)
		if handler is None:
			raise exceptions.BackendError(f"unsupported_query:{kind}", status_code=400)
		return handler(spec, index, doc_id, document)

	def _q_match_all(self, spec, index, doc_id, document) -> Optional[float]:
		return float(spec.get("boost", 1.0)) if isinstance(spec, Mapping) else 1.0

	def _q_bool(self, spec, index, doc_id, document) -> Optional[float]:
		total = 0.0
		for clause in _as_list(spec.get("must")):
			score = self.score(clause, index, doc_id, document)
			if score is None:
				return None
			total += score
		for clause in _as_list(spec.get("filter")):
			if self.score(clause, index, doc_id, document) is None:
				return None
		for clause in _as_list(spec.get("must_not")):
			if self.score(clause, index, doc_id, document) is not None:
				return None
		should_hits = 0
		for clause in _as_list(spec.get("should")):
			score = self.score(clause, index, doc_id, document)
			if score is not None:
				should_hits += 1
				total += score
		required = spec.get("minimum_should_match")
		if required is None:
			required = 0 if (spec.get("must") or spec.get("filter")) else (1 if spec.get("should") else 0)
		if should_hits < int(required):
			return None
		return total * float(spec.get("boost", 1.0))

	def _q_term(self, spec, index, doc_id, document) -> Optional[float]:
		(field, expected), = spec.items()
		boost = 1.0
		if isinstance(expected, Mapping):
			boost = float(expected.get("boost", 1.0))
			expected = expected.get("value")
		values = _as_list(_resolve_field(document, field))
		return boost if any(_values_equal(value, expected) for value in values) else None

	def _q_terms(self, spec, index, doc_id, document) -> Optional[float]:
		boost = float(spec.get("boost", 1.0))
		for field, expected in spec.items():
			if field == "boost":
				continue
			values = _as_list(_resolve_field(document, field))
			if any(_values_equal(value, candidate) for value in values for candidate in expected):
				return boost
			return None
		return None

	def _q_ids(self, spec, index, doc_id, document) -> Optional[float]:
		return 1.0 if doc_id in {str(value) for value in spec.get("values", [])} else None

	def _q_range(self, spec, index, doc_id, document) -> Optional[float]:
		(field, bounds), = spec.items()
		raw = _resolve_field(document, field)
		if raw is None:
			return None
		boost = float(bounds.get("boost", 1.0))
		is_date = any(isinstance(bounds.get(op), str) for op in ("gte", "gt", "lte", "lt"))
		if is_date:
			value = _parse_datetime(raw)
			if value is None:
				return None
			checks = {
				"gte": lambda b: value >= b,
				"gt": lambda b: value > b,
				"lte": lambda b: value <= b,
				"lt": lambda b: value < b,
			}
			for op, check in checks.items():
				if op not in bounds:
					continue
				bound = resolve_date_bound(bounds[op], now=self._now, round_up=op in ("lte", "gt"))
				if bound is None or not check(bound):
					return None
			return boost
		try:
			number = float(raw)
		except (TypeError, ValueError):
			return None
		if "gte" in bounds and not number >= float(bounds["gte"]):
			return None
		if "gt" in bounds and not number > float(bounds["gt"]):
			return None
		if "lte" in bounds and not number <= float(bounds["lte"]):
			return None
		if "lt" in bounds and not number < float(bounds["lt"]):
			return None
		return boost

	def _q_multi_match(self, spec, index, doc_id, document) -> Optional[float]:
		terms = tokenize(spec.get("query"))
		if not terms:
			return None
		fuzzy = spec.get("fuzziness") is not None
		require_all = str(spec.get("operator", "or")).lower() == "and"
		best: Optional[float] = None
		for field_spec in spec.get("fields", []):
			field, weight = _split_field_boost(field_spec)
			tokens = tokenize(_resolve_field(document, field))
			if not tokens:
				continue
			matched = 0
			weight_sum = 0.0
			for term in terms:
				tf = sum(1 for token in tokens if _term_matches(term, token, fuzzy=fuzzy))
				if tf:
					matched += 1
					weight_sum += math.sqrt(tf) if term in tokens else 0.5 * math.sqrt(tf)
			if matched == 0 or (require_all and matched < len(terms)):
				continue
			score = weight * weight_sum / math.sqrt(len(tokens))
			if best is None or score > best:
				best = score
		return best

	def _q_match_phrase(self, spec, index, doc_id, document) -> Optional[float]:
		(field, options), = spec.items()
		if not isinstance(options, Mapping):
			options = {"query": options}
		terms = tokenize(options.get("query"))
		slop = int(options.get("slop", 0))
		tokens = tokenize(_resolve_field(document, field))
		if not terms or not tokens:
			return None
		positions = [[idx for idx, token in enumerate(tokens) if token == term] for term in terms]
		if any(not found for found in positions):
			return None
		best_cost: Optional[int] = None
		for combination_index, combo in enumerate(product(*positions)):
			if combination_index >= _MAX_PHRASE_COMBINATIONS:
				break
			if len(set(combo)) != len(combo):
				continue
			anchor = combo[0]
			cost = sum(abs((pos - anchor) - offset) for offset, pos in enumerate(combo))
			if best_cost is None or cost < best_cost:
				best_cost = cost
		if best_cost is None or best_cost > slop:
			return None
		return len(terms) / (1.0 + best_cost) / math.sqrt(len(tokens)) * 2.0

	def _q_more_like_this(self, spec, index, doc_id, document) -> Optional[float]:
		fields = spec.get("fields", [])
		liked = {(str(item.get("_index", index)), str(item["_id"])) for item in spec.get("like", [])}
		if not spec.get("include", False) and (index, doc_id) in liked:
			return None
		frequencies: Counter[str] = Counter()
		for like_index, like_id, like_doc in self._corpus:
			if (like_index, like_id) in liked:
				for field in fields:
					frequencies.update(tokenize(_resolve_field(like_doc, field)))
		min_tf = int(spec.get("min_term_freq", 2))
		candidates = sorted(
			((term, count) for term, count in frequencies.items() if count >= min_tf),
			key=lambda item: (-item[1], item[0]),
		)[: int(spec.get("max_query_terms", 25))]
		if not candidates:
			return None
		own_tokens: set[str] = set()
		for field in fields:
			own_tokens.update(tokenize(_resolve_field(document, field)))
		shared = [term for term, _ in candidates if term in own_tokens]
		required = max(1, math.floor(0.3 * len(candidates)))
		if len(shared) < required:
			return None
		return float(len(shared))

	def highlight_terms(self, query: Mapping[str, Any]) -> set[str]:
		terms: set[str] = set()
		(kind, spec), = query.items()
		if kind == "bool":
			for clause in _as_list(spec.get("must")) + _as_list(spec.get("should")):
				terms |= self.highlight_terms(clause)
		elif kind == "multi_match":
			terms.update(tokenize(spec.get("query")))
		elif kind == "match_phrase":
			(_, options), = spec.items()
			terms.update(tokenize(options.get("query") if isinstance(options, Mapping) else options))
		return terms


def _values_equal(value: Any, expected: Any) -> bool:
	if isinstance(value, bool) or isinstance(expected, bool):
		return value is expected or str(value).lower() == str(expected).lower()
	if isinstance(value, (int, float)) and isinstance(expected, (int, float)):
		return float(value) == float(expected)
	return str(value) == str(expected)


def _sort_field(entry: Any) -> str:
	if isinstance(entry, str):
		return entry
	(field, _), = entry.items()
	return field


def _apply_sort(matched: list, entry: Any) -> list:
	field = _sort_field(entry)
	order = "desc" if field == "_score" else "asc"
	if isinstance(entry, Mapping):
		options = entry[field]
		order = options.get("order", order) if isinstance(options, Mapping) else str(options)
	descending = order == "desc"

	def _key(item):
		if field == "_score":
			return item[3]
		value = _resolve_field(item[2], field)
		if isinstance(value, list):
			value = min(value) if value else None
		parsed = _parse_datetime(value) if isinstance(value, str) else None
		return parsed if parsed is not None else value

	present = [item for item in matched if _key(item) is not None]
	missing = [item for item in matched if _key(item) is None]
	present.sort(key=_key, reverse=descending)
	return present + missing


def _aggregate(spec: Mapping[str, Any], documents: Iterable[tuple[str, Mapping[str, Any]]]) -> dict[str, Any]:
	if "terms" in spec:
		options = spec["terms"]
		field = options["field"]
		include = options.get("include")
		pattern = re.compile(include) if isinstance(include, str) else None
		counts: Counter[str] = Counter()
		for index, document in documents:
			values = [index] if field == "_index" else _as_list(_resolve_field(document, field))
			for value in {str(v) for v in values if v is not None}:
				if pattern is not None and not pattern.fullmatch(value):
					continue
				counts[value] += 1
		ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[: int(options.get("size", 10))]
		return {
			"doc_count_error_upper_bound": 0,
			"sum_other_doc_count": max(0, sum(counts.values()) - sum(count for _, count in ordered)),
			"buckets": [{"key": key, "doc_count": count} for key, count in ordered],
		}
	if "date_histogram" in spec:
		field = spec["date_histogram"]["field"]
		days: Counter[datetime] = Counter()
		for _, document in documents:
			value = _parse_datetime(_resolve_field(document, field))
			if value is not None:
				days[_round_datetime(value, "d", up=False)] += 1
		return {
			"buckets": [
				{
					"key_as_string": day.isoformat(),
					"key": int(day.timestamp() * 1000),
					"doc_count": count,
				}
				for day, count in sorted(days.items())
			]
		}
	raise exceptions.BackendError("unsupported_aggregation", status_code=400)


def _highlight(document: Mapping[str, Any], spec: Mapping[str, Any], terms: set[str]) -> dict[str, list[str]]:
	if not spec or not terms:
		return {}
	fragment_size = int(spec.get("fragment_size", 100))
	result: dict[str, list[str]] = {}
	for field in spec.get("fields", {}):
		value = _resolve_field(document, field)
		if not isinstance(value, str) or not value:
			continue
		found = False

		def _mark(match: re.Match) -> str:
			nonlocal found
			if match.group(0).lower() in terms:
				found = True
				return f"<em>{match.group(0)}</em>"
			return match.group(0)

		marked = _TOKEN_RE.sub(_mark, value)
		if found:
			result[field] = [marked[: fragment_size + 20 * len(terms)]]
	return result


__all__ = ["MemorySearchBackend", "resolve_date_bound", "tokenize"]
