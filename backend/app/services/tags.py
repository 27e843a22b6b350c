"""Tag validation and tag mutation rules.

Tags are string key/value annotations on a feature. Keys are trimmed and
must match ``^[A-Za-z0-9:_-]{1,64}$``; values are trimmed, non-empty and
at most 256 characters.

Validation never stops at the first problem: every issue is collected and
raised as one ``ValidationError`` whose details are
``{"issues": [{"path": [...], "message": ..., "code": ...}, ...]}`` so a
form can map each issue back to its row.

Example:
    >>> from app.services import tags
    >>> mutation = tags.validate_mutation({"delete": ["a"], "set": {"a": "2"}})
    >>> tags.apply_mutation({"a": "1"}, mutation)
    {'a': '2'}
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Mapping
from typing import Any

from typing_extensions import TypedDict

from app.core import errors

TAG_KEY_MAX_LENGTH = 64
TAG_VALUE_MAX_LENGTH = 256
TAG_KEY_PATTERN = re.compile(r"^[A-Za-z0-9:_-]{1,64}$")

TagRecord = dict[str, str]


class TagIssue(TypedDict):
    path: list[str | int]
    message: str
    code: str


@dataclasses.dataclass(frozen=True)
class TagMutation:
    """Validated tag delta: keys in ``delete`` are removed, then ``set``
    is upserted."""

    set: TagRecord = dataclasses.field(default_factory=dict)
    delete: tuple[str, ...] = ()


def _issue(path: list[str | int], message: str, code: str) -> TagIssue:
    return TagIssue(path=path, message=message, code=code)


def _check_key(raw: Any, path: list[str | int]) -> tuple[str | None, list[TagIssue]]:
    if not isinstance(raw, str):
        return None, [_issue(path, "Tag key must be a string.", "invalid_type")]
    key = raw.strip()
    if not key:
        return None, [_issue(path, "Tag key is required.", "required")]
    if len(key) > TAG_KEY_MAX_LENGTH:
        return None, [
            _issue(
                path,
                f"Tag key must be {TAG_KEY_MAX_LENGTH} characters or fewer.",
                "too_long",
            )
        ]
    if not TAG_KEY_PATTERN.match(key):
        return None, [
            _issue(
                path,
                "Tag key may only include letters, numbers, underscores, "
                "hyphens, or colons.",
                "invalid_pattern",
            )
        ]
    return key, []


def _check_value(raw: Any, path: list[str | int]) -> tuple[str | None, list[TagIssue]]:
    if not isinstance(raw, str):
        return None, [_issue(path, "Tag value must be a string.", "invalid_type")]
    value = raw.strip()
    if not value:
        return None, [_issue(path, "Tag value is required.", "required")]
    if len(value) > TAG_VALUE_MAX_LENGTH:
        return None, [
            _issue(
                path,
                f"Tag value must be {TAG_VALUE_MAX_LENGTH} characters or fewer.",
                "too_long",
            )
        ]
    return value, []


def _check_record(
    raw: Any, prefix: list[str | int]
) -> tuple[TagRecord, list[TagIssue]]:
    if not isinstance(raw, Mapping):
        return {}, [_issue(prefix, "Tags must be an object.", "invalid_type")]

    record: TagRecord = {}
    issues: list[TagIssue] = []
    seen: dict[str, Any] = {}
    for raw_key, raw_value in raw.items():
        path = [*prefix, raw_key]
        key, key_issues = _check_key(raw_key, path)
        value, value_issues = _check_value(raw_value, path)
        issues.extend(key_issues)
        issues.extend(value_issues)
        if key is None:
            continue

        # Keys that only differ by surrounding whitespace collide once trimmed.
        if key in seen:
            message = "Duplicate tag keys are not allowed."
            issues.append(_issue([*prefix, seen[key]], message, "duplicate_key"))
            issues.append(_issue(path, message, "duplicate_key"))
            continue
        seen[key] = raw_key
        if value is not None:
            record[key] = value
    return record, issues


def _raise_if_issues(message: str, issues: list[TagIssue]) -> None:
    if issues:
        raise errors.ValidationError(message, {"issues": issues})


def validate_tags(tags: Any) -> TagRecord:
    """Validate a tag record and return its trimmed form.

    Args:
        tags: Mapping of tag keys to values, or None for no tags.

    Returns:
        New dict with trimmed keys and values.

    Raises:
        ValidationError: With every key/value issue found.
    """
    if tags is None:
        return {}
    record, issues = _check_record(tags, [])
    _raise_if_issues("tags are invalid", issues)
    return record


def validate_mutation(payload: Any) -> TagMutation:
    """Validate a ``{set?, delete?}`` tag mutation payload.

    Duplicate delete keys are dropped, keeping first-seen order. At least
    one of ``set`` or ``delete`` must be non-empty.

    Raises:
        ValidationError: Single aggregate error listing all issues.
    """
    if not isinstance(payload, Mapping):
        raise errors.ValidationError(
            "tag mutation is invalid",
            {"issues": [_issue([], "Tag mutation must be an object.", "invalid_type")]},
        )

    issues: list[TagIssue] = []
    to_set: TagRecord = {}
    to_delete: list[str] = []

    raw_set = payload.get("set")
    if raw_set is not None:
        to_set, set_issues = _check_record(raw_set, ["set"])
        issues.extend(set_issues)

    raw_delete = payload.get("delete")
    if raw_delete is not None:
        if isinstance(raw_delete, (list, tuple)):
            for index, raw_key in enumerate(raw_delete):
                key, key_issues = _check_key(raw_key, ["delete", index])
                issues.extend(key_issues)
                if key is not None and key not in to_delete:
                    to_delete.append(key)
        else:
            issues.append(
                _issue(["delete"], "Tag deletions must be a list of keys.", "invalid_type")
            )

    has_set = isinstance(raw_set, Mapping) and len(raw_set) > 0
    has_delete = isinstance(raw_delete, (list, tuple)) and len(raw_delete) > 0
    if not has_set and not has_delete:
        issues.append(
            _issue([], "At least one tag change must be provided.", "empty_mutation")
        )

    _raise_if_issues("tag mutation is invalid", issues)
    return TagMutation(set=to_set, delete=tuple(to_delete))


def validate_tag_rows(rows: Any) -> TagRecord:
    """Validate the rows of an editable tag form.

    Each row is a mapping with ``key`` and ``value``. Keys are compared
    case-insensitively after trimming; a duplicate is reported on both the
    first row and the repeated row.

    Returns:
        Tag record built from the rows, in row order.

    Raises:
        ValidationError: With issue paths ``[row_index, "key" | "value"]``.
    """
    if not isinstance(rows, (list, tuple)):
        raise errors.ValidationError(
            "tag rows are invalid",
            {"issues": [_issue([], "Tag rows must be a list.", "invalid_type")]},
        )

    issues: list[TagIssue] = []
    record: TagRecord = {}
    seen: dict[str, int] = {}
    for index, row in enumerate(rows):
        if not isinstance(row, Mapping):
            issues.append(_issue([index], "Tag row must be an object.", "invalid_type"))
            continue

        key, key_issues = _check_key(row.get("key"), [index, "key"])
        value, value_issues = _check_value(row.get("value"), [index, "value"])
        issues.extend(key_issues)
        issues.extend(value_issues)
        if key is None:
            continue

        normalized = key.lower()
        if normalized in seen:
            message = "Duplicate tag keys are not allowed."
            issues.append(_issue([seen[normalized], "key"], message, "duplicate_key"))
            issues.append(_issue([index, "key"], message, "duplicate_key"))
            continue
        seen[normalized] = index
        if value is not None:
            record[key] = value

    _raise_if_issues("tag rows are invalid", issues)
    return record


def diff_tags(current: Mapping[str, str], edited: Mapping[str, str]) -> dict[str, Any]:
    """Build the ``{set?, delete?}`` payload turning ``current`` into ``edited``.

    Only changed or new keys are set; keys missing from ``edited`` are
    deleted. Empty parts are omitted, so an unchanged record yields ``{}``.

    Example:
        >>> diff_tags({"a": "1", "b": "2"}, {"a": "1", "c": "3"})
        {'set': {'c': '3'}, 'delete': ['b']}
    """
    to_set = {key: value for key, value in edited.items() if current.get(key) != value}
    to_delete = [key for key in current if key not in edited]
    payload: dict[str, Any] = {}
    if to_set:
        payload["set"] = to_set
    if to_delete:
        payload["delete"] = to_delete
    return payload


def apply_mutation(tags: Mapping[str, str], mutation: TagMutation) -> TagRecord:
    """Apply a mutation to a tag record, deleting before setting.

    A key listed in both ``delete`` and ``set`` ends up with the new value.

    Returns:
        A new dict; ``tags`` is not modified.
    """
    merged = dict(tags)
    for key in mutation.delete:
        merged.pop(key, None)
    merged.update(mutation.set)
    return merged
