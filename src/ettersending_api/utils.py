"""
Small helpers shared by the gateways and the submission flow.

This module provides helper functions for:
- Formatting submission status lines so they line up in the log
- Deriving attachment ids from the references sent by the frontend
- Joining base URLs with path segments
"""

from __future__ import annotations

from typing import Iterable, List


def format_status_log(submission_id: str, message: str) -> str:
    """
    Format a status line for a submission.

    The id is right-aligned to the width of a UUID so consecutive lines for
    different submissions stay readable.
    """
    return f"Ettersending med søknadID: {submission_id:>36} {message}"


def attachment_id(reference: str) -> str:
    """
    Extract the attachment id from a reference.

    References are either plain ids or URLs whose last path segment is the id.

    Example:
        >>> attachment_id("http://localhost:8080/vedlegg/1234")
        '1234'
        >>> attachment_id("1234")
        '1234'
    """
    return reference.rstrip("/").rsplit("/", 1)[-1]


def attachment_ids(references: Iterable[str]) -> List[str]:
    return [attachment_id(reference) for reference in references]


def build_url(base_url: str, *path_parts: str) -> str:
    """
    Join a base URL and path segments with exactly one slash between them.

    Example:
        >>> build_url("http://mottak/", "v1", "ettersend")
        'http://mottak/v1/ettersend'
    """
    parts = [base_url.rstrip("/")]
    parts.extend(part.strip("/") for part in path_parts)
    return "/".join(parts)
