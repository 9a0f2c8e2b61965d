"""Execution of Mongo-style image predicates against each persistence mode.

``matches`` evaluates a predicate against an in-memory document,
``compile_sql`` turns it into a parameterized PostgreSQL ``WHERE`` clause and
``apply_postgrest`` adds it to a Supabase/PostgREST request builder.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from src.domain.errors import ValidationError

# column name -> True for array columns
IMAGE_FIELDS: dict[str, bool] = {
    "id": False,
    "owner_id": False,
    "visibility": False,
    "title": False,
    "description": False,
    "tags": True,
    "format": False,
    "size": False,
    "width": False,
    "height": False,
    "created_at": False,
    "updated_at": False,
}

_COMPARISONS = {"$gt": ">", "$gte": ">=", "$lt": "<", "$lte": "<="}
_POSTGREST_COMPARISONS = {"$gt": "gt", "$gte": "gte", "$lt": "lt", "$lte": "lte"}
_OPERATORS = {"$in", "$regex", "$options", "$exists", "$ne", *_COMPARISONS}


def _check_field(field: str) -> bool:
    if field not in IMAGE_FIELDS:
        raise ValidationError(f"Unsupported query field: {field}")
    return IMAGE_FIELDS[field]


def _is_operator_dict(value: Any) -> bool:
    return isinstance(value, dict) and bool(value) and all(k in _OPERATORS for k in value)


def _regex(condition: dict[str, Any]) -> re.Pattern[str]:
    flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
    return re.compile(condition["$regex"], flags)


# -- in-memory -----------------------------------------------------------


def _match_value(actual: Any, expected: Any) -> bool:
    if isinstance(actual, list):
        return expected in actual
    return actual == expected


def _match_condition(actual: Any, condition: Any) -> bool:
    if not _is_operator_dict(condition):
        return _match_value(actual, condition)
    for op, operand in condition.items():
        if op == "$options":
            continue
        if op == "$in":
            values = actual if isinstance(actual, list) else [actual]
            if not any(v in operand for v in values):
                return False
        elif op == "$ne":
            if _match_value(actual, operand):
                return False
        elif op == "$exists":
            if (actual is not None) != bool(operand):
                return False
        elif op == "$regex":
            if actual is None or not _regex(condition).search(str(actual)):
                return False
        else:
            if actual is None:
                return False
            left, right = actual, operand
            if op == "$gt" and not left > right:
                return False
            if op == "$gte" and not left >= right:
                return False
            if op == "$lt" and not left < right:
                return False
            if op == "$lte" and not left <= right:
                return False
    return True


def matches(document: dict[str, Any], query: dict[str, Any], *, open_fields: bool = False) -> bool:
    """Evaluate ``query`` against ``document``.

    Image documents only accept the known image columns; ``open_fields``
    lifts that check for flattened metadata documents.
    """
    for key, condition in query.items():
        if key == "$or":
            if not any(matches(document, sub, open_fields=open_fields) for sub in condition):
                return False
        elif key == "$and":
            if not all(matches(document, sub, open_fields=open_fields) for sub in condition):
                return False
        else:
            if not open_fields:
                _check_field(key)
            if not _match_condition(document.get(key), condition):
                return False
    return True


# -- PostgreSQL ----------------------------------------------------------


def _sql_condition(field: str, condition: Any, params: list[Any]) -> str:
    is_array = _check_field(field)
    if not _is_operator_dict(condition):
        params.append(condition)
        return f"%s = ANY({field})" if is_array else f"{field} = %s"
    parts: list[str] = []
    for op, operand in condition.items():
        if op == "$options":
            continue
        if op == "$in":
            params.append(list(operand))
            parts.append(f"{field} && %s" if is_array else f"{field} = ANY(%s)")
        elif op == "$ne":
            params.append(operand)
            parts.append(f"NOT (%s = ANY({field}))" if is_array else f"{field} IS DISTINCT FROM %s")
        elif op == "$exists":
            parts.append(f"{field} IS NOT NULL" if operand else f"{field} IS NULL")
        elif op == "$regex":
            params.append(operand)
            sql_op = "~*" if "i" in condition.get("$options", "") else "~"
            parts.append(f"{field} {sql_op} %s")
        else:
            params.append(operand)
            parts.append(f"{field} {_COMPARISONS[op]} %s")
    return " AND ".join(parts) if parts else "TRUE"


def _sql_clause(query: dict[str, Any], params: list[Any]) -> str:
    parts: list[str] = []
    for key, condition in query.items():
        if key == "$or":
            subs = [_sql_clause(sub, params) for sub in condition]
            parts.append("(" + " OR ".join(subs) + ")" if subs else "FALSE")
        elif key == "$and":
            subs = [_sql_clause(sub, params) for sub in condition]
            parts.append("(" + " AND ".join(subs) + ")" if subs else "TRUE")
        else:
            parts.append(_sql_condition(key, condition, params))
    return "(" + " AND ".join(parts) + ")" if parts else "TRUE"


def compile_sql(query: dict[str, Any]) -> tuple[str, tuple[Any, ...]]:
    params: list[Any] = []
    clause = _sql_clause(query, params)
    return clause, tuple(params)


def sql_order(sort: tuple[str, int]) -> str:
    field, direction = sort
    _check_field(field)
    return f"{field} {'ASC' if direction > 0 else 'DESC'}, id ASC"


# -- Supabase / PostgREST ------------------------------------------------


def _postgrest_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        value = value.isoformat()
    text = str(value)
    if any(ch in text for ch in ',.:()"\\ '):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def _postgrest_list(values: list[Any], braces: str = "()") -> str:
    inner = ",".join(_postgrest_literal(v) for v in values)
    return f"{braces[0]}{inner}{braces[1]}"


def _postgrest_terms(field: str, condition: Any) -> list[tuple[str, str, str]]:
    """(column, operator, criteria) triples for one field condition."""
    is_array = _check_field(field)
    if not _is_operator_dict(condition):
        if is_array:
            return [(field, "cs", _postgrest_list([condition], "{}"))]
        return [(field, "eq", _postgrest_literal(condition))]
    terms: list[tuple[str, str, str]] = []
    for op, operand in condition.items():
        if op == "$options":
            continue
        if op == "$in":
            if is_array:
                terms.append((field, "ov", _postgrest_list(list(operand), "{}")))
            else:
                terms.append((field, "in", _postgrest_list(list(operand))))
        elif op == "$ne":
            terms.append((field, "neq", _postgrest_literal(operand)))
        elif op == "$exists":
            terms.append((field, "not.is" if operand else "is", "null"))
        elif op == "$regex":
            pg_op = "imatch" if "i" in condition.get("$options", "") else "match"
            terms.append((field, pg_op, _postgrest_literal(operand)))
        else:
            terms.append((field, _POSTGREST_COMPARISONS[op], _postgrest_literal(operand)))
    return terms


def _postgrest_expression(query: dict[str, Any]) -> str:
    """Render a sub-predicate in PostgREST logical-tree syntax."""
    items: list[str] = []
    for key, condition in query.items():
        if key in ("$or", "$and"):
            word = "or" if key == "$or" else "and"
            items.append(f"{word}(" + ",".join(_postgrest_expression(sub) for sub in condition) + ")")
        else:
            for column, op, criteria in _postgrest_terms(key, condition):
                items.append(f"{column}.{op}.{criteria}")
    if len(items) == 1:
        return items[0]
    return "and(" + ",".join(items) + ")"


def apply_postgrest(request: Any, query: dict[str, Any]) -> Any:
    for key, condition in query.items():
        if key == "$or":
            request = request.or_(",".join(_postgrest_expression(sub) for sub in condition))
        elif key == "$and":
            for sub in condition:
                request = apply_postgrest(request, sub)
        else:
            for column, op, criteria in _postgrest_terms(key, condition):
                request = request.filter(column, op, criteria)
    return request
