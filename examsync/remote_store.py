"""
Adapter over the Supabase REST (PostgREST) API.

Every failure leaves this module as a typed error:
- NetworkError: the request never got a usable answer (transport failure,
  timeout, gateway error)
- RemoteRejection: the database answered with a logical error
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx

from .errors import NetworkError, NotFound, RemoteRejection
from .models import ClientConfig, as_row, format_timestamp, utcnow

# status codes that mean "the server could not be reached", not "the server said no"
NETWORK_STATUS_CODES = {408, 502, 503, 504}

FilterValue = Union[str, int, bool, None, Tuple[str, Any]]


def _filter_param(value: FilterValue) -> str:
    if isinstance(value, tuple):
        operator, operand = value
        return f"{operator}.{_literal(operand)}"
    if value is None:
        return "is.null"
    return f"eq.{_literal(value)}"


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return format_timestamp(value)
    return str(value)


class SupabaseStore:
    """Thin synchronous client for the tables the exam client touches."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
        access_token: Optional[str] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.client = httpx.Client(
            base_url=f"{self.base_url}/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {access_token or api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport
        )

    @classmethod
    def from_config(cls, config: ClientConfig, **kwargs) -> 'SupabaseStore':
        return cls(
            config.supabase_url,
            config.supabase_key,
            timeout=config.request_timeout_seconds,
            **kwargs
        )

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Any:
        try:
            response = self.client.request(method, path, params=params, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timeout on {method} {path}: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Connection failed on {method} {path}: {e}") from e
        except httpx.RequestError as e:
            # redirect loops and undecodable bodies from proxies or captive portals
            raise NetworkError(f"Request failed on {method} {path}: {e}") from e

        if response.status_code in NETWORK_STATUS_CODES:
            raise NetworkError(
                f"Network error on {method} {path}: gateway returned {response.status_code}"
            )

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            raise RemoteRejection(
                body.get("message") or f"{method} {path} rejected with status {response.status_code}",
                status_code=response.status_code,
                code=body.get("code"),
                details=body.get("details"),
                hint=body.get("hint")
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteRejection(
                f"{method} {path} returned a body that is not JSON: {e}",
                status_code=response.status_code
            ) from e

    # Generic table access

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, FilterValue]] = None,
        columns: str = "*",
        order: Optional[str] = None,
        limit: Optional[int] = None,
        or_filter: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        params = {"select": columns}
        for column, value in (filters or {}).items():
            params[column] = _filter_param(value)
        if or_filter:
            params["or"] = f"({or_filter})"
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        return self._request("GET", f"/{table}", params=params) or []

    def maybe_one(self, table: str, filters: Dict[str, FilterValue], **kwargs) -> Optional[Dict[str, Any]]:
        rows = self.select(table, filters, **kwargs)
        return rows[0] if rows else None

    def select_one(self, table: str, filters: Dict[str, FilterValue], **kwargs) -> Dict[str, Any]:
        row = self.maybe_one(table, filters, **kwargs)
        if row is None:
            raise NotFound(f"No row in {table} matching {filters}", status_code=406, code="PGRST116")
        return row

    def insert(self, table: str, row: Dict[str, Any], ignore_duplicates: bool = False) -> Optional[Dict[str, Any]]:
        prefer = "return=representation"
        if ignore_duplicates:
            prefer += ",resolution=ignore-duplicates"
        rows = self._request("POST", f"/{table}", json=as_row(row), headers={"Prefer": prefer})
        return rows[0] if rows else None

    def update(self, table: str, filters: Dict[str, FilterValue], values: Dict[str, Any]) -> List[Dict[str, Any]]:
        params = {column: _filter_param(value) for column, value in filters.items()}
        rows = self._request(
            "PATCH",
            f"/{table}",
            params=params,
            json=as_row(values),
            headers={"Prefer": "return=representation"}
        )
        return rows or []

    def rpc(self, function: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("POST", f"/rpc/{function}", json=as_row(arguments or {}))

    # Sessions

    def fetch_session(self, session_id: str) -> Dict[str, Any]:
        return self.select_one(
            "exam_sessions",
            {"id": session_id},
            columns="*,exams(id,title,estado,duracion_minutos),"
                    "psychometric_tests(id,name,is_active,duration_minutes)"
        )

    def insert_session(self, row: Dict[str, Any]) -> Dict[str, Any]:
        created = self.insert("exam_sessions", row)
        if not created:
            raise RemoteRejection("Session insert returned no row")
        return created

    def update_session(self, session_id: str, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        values = dict(values)
        values.setdefault("updated_at", utcnow())
        return self.update("exam_sessions", {"id": session_id}, values)

    def fetch_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        column = "email" if "@" in user_id else "id"
        return self.maybe_one(
            "profiles",
            {column: user_id},
            columns="id,email,company_id,can_login,access_restricted"
        )

    # Attempts

    def create_attempt(
        self,
        exam_id: str,
        user_id: str,
        questions: List[Any],
        answers: List[Any],
        attempt_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Insert a finished attempt. With an attempt id, a replayed insert is a no-op."""
        now = utcnow()
        row = {
            "exam_id": exam_id,
            "user_id": user_id,
            "questions": questions,
            "answers": answers,
            "started_at": now,
            "completed_at": now,
        }
        if attempt_id:
            row["id"] = attempt_id
        return self.insert("exam_attempts", row, ignore_duplicates=attempt_id is not None)

    def update_attempt(self, attempt_id: str, questions: List[Any], answers: List[Any]):
        rows = self.update(
            "exam_attempts",
            {"id": attempt_id},
            {"questions": questions, "answers": answers, "completed_at": utcnow()}
        )
        if not rows:
            raise NotFound(f"Attempt {attempt_id} not found")
        return rows[0]

    def complete_attempt(self, attempt_id: str):
        return self.update("exam_attempts", {"id": attempt_id}, {"completed_at": utcnow()})

    # Psychometric results

    def insert_many(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return self._request(
            "POST",
            f"/{table}",
            json=[as_row(row) for row in rows],
            headers={"Prefer": "return=representation"}
        ) or []

    def has_personality_responses(self, user_id: str, session_id: str) -> bool:
        rows = self.select(
            "personality_responses",
            {"user_id": user_id, "session_id": session_id},
            columns="id",
            limit=1
        )
        return bool(rows)

    def insert_personality_responses(self, user_id: str, session_id: str, responses: List[Dict[str, Any]]):
        """Store one row per answered question (``questionId`` / ``responseValue``)."""
        rows = [
            {
                "user_id": user_id,
                "session_id": session_id,
                "question_id": response["questionId"],
                "response_value": response["responseValue"],
            }
            for response in responses
        ]
        return self.insert_many("personality_responses", rows)

    def has_personality_results(self, user_id: str, session_id: str) -> bool:
        row = self.maybe_one(
            "personality_results",
            {"user_id": user_id, "session_id": session_id},
            columns="id"
        )
        return row is not None

    def insert_personality_results(self, user_id: str, session_id: str, scores: Dict[str, float]):
        row = {"user_id": user_id, "session_id": session_id}
        for trait, value in scores.items():
            row[f"{trait}_score"] = value
        return self.insert("personality_results", row)

    # Assignments, credentials and profiles

    def update_assignment_status(self, assignment_id: str, status: str):
        return self.update("exam_assignments", {"id": assignment_id}, {"status": status})

    def restrict_user_access(self, user_id: str):
        column = "email" if "@" in user_id else "id"
        return self.update(
            "profiles",
            {column: user_id},
            {"last_exam_completed_at": utcnow(), "access_restricted": True, "can_login": False}
        )

    def find_credentials(
        self,
        filters: Dict[str, FilterValue],
        or_filter: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        return self.select(
            "exam_credentials",
            filters,
            order="created_at.desc",
            limit=1,
            or_filter=or_filter
        )

    def mark_credential_used(self, credential_id: str):
        return self.update(
            "exam_credentials",
            {"id": credential_id},
            {"is_used": True, "sent_at": utcnow()}
        )

    def find_assignments(self, filters: Dict[str, FilterValue]) -> List[Dict[str, Any]]:
        return self.select("exam_assignments", filters, order="assigned_at.desc", limit=1)
