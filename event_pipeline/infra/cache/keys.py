"""Key namespace of the projection state store.

Every key the consumers read or write is built here so the layout lives in
one place. The optional global prefix is applied by ``StateStore``.
"""

from __future__ import annotations


def session(session_id: str) -> str:
    return f"session:{session_id}"


def active_session(session_id: str) -> str:
    return f"active_session:{session_id}"


def session_metrics(session_id: str) -> str:
    return f"session_metrics:{session_id}"


def quota(bucket_id: str) -> str:
    return f"quota:{bucket_id}"


def quota_session(bucket_id: str, session_id: str) -> str:
    return f"quota:{bucket_id}:session:{session_id}"


def page_answers(session_id: str, page_id: str) -> str:
    return f"answers:{session_id}:{page_id}"


def question_response(question_id: str, session_id: str) -> str:
    return f"question_response:{question_id}:{session_id}"


def survey_counter(survey_id: str, *parts: str) -> str:
    """``survey:{id}:<parts...>``, e.g. ``survey_counter(s, "sessions", "started")``."""
    return ":".join(("survey", survey_id, *parts))


def tenant_counter(tenant_id: str, *parts: str) -> str:
    return ":".join(("tenant", tenant_id, *parts))


def realtime(kind: str, entity_id: str) -> str:
    """``realtime:{kind}:{id}`` (activity, progress, participants)."""
    return f"realtime:{kind}:{entity_id}"


def processed_event(scope: str, event_id: str) -> str:
    return f"processed:{scope}:{event_id}"
