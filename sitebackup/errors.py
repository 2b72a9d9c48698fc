# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for sitebackup.

These helpers centralize wording for common configuration and validation
errors so that all modules present consistent, actionable messages.
"""

from typing import Iterable


def explain_missing_database_url_env() -> str:
    """
    Explain that the database URL environment variable is missing.
    """

    return (
        "Database connection is not configured. "
        "Set the DATABASE_URL environment variable or pass database_url=... to create_config()."
    )


def explain_invalid_int_env(name: str, value: str | None) -> str:
    """
    Explain that an integer environment variable could not be parsed.
    """

    return f"Invalid {name} value: {value!r}. It must be a positive integer."


def explain_invalid_trigger_expression(expression: str, reason: str) -> str:
    """
    Explain why a cron trigger expression was rejected.
    """

    return (
        f"Invalid trigger expression {expression!r}: {reason}. "
        "Expected 5 fields: minute hour day-of-month month day-of-week, e.g. '0 2 * * *'."
    )


def explain_invalid_choice(field: str, value: object, choices: Iterable[str]) -> str:
    """
    Explain that a filter or sort value is not one of the accepted options.
    """

    return f"Invalid {field}: {value!r}. Expected one of: {', '.join(choices)}."
