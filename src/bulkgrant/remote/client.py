"""Client for the remote project-membership API.

Retries live here and nowhere else: callers only ever see a result or a
``MembershipError`` raised after the retry policy has given up.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from bulkgrant.config.settings import AppSettings
from bulkgrant.ledger.models import TaskAction
from bulkgrant.shared.logging import get_logger, log_event

from .errors import MembershipError, RateLimitExceeded, UpstreamServerError, UpstreamUnavailableError
from .retry import RetryPolicy


REQUEST_ID_HEADER = "x-ads-request-id"
MEMBER_PAGE_SIZE = 100


@dataclass
class ProjectMember:
    member_id: str
    email: str
    role_ids: List[str]


@dataclass
class EnsureResult:
    action: str
    previous_role: Optional[str]
    request_id: Optional[str]


def _admin_project_id(project_id: str) -> str:
    return project_id[2:] if project_id.startswith("b.") else project_id


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _error_message(response: httpx.Response) -> str:
    body = _response_body(response)
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            parts = []
            for error in errors:
                if isinstance(error, dict):
                    parts.append(str(error.get("detail") or error.get("message") or error.get("title") or error))
                else:
                    parts.append(str(error))
            return "; ".join(parts)
        if body.get("detail"):
            return str(body["detail"])
        if body.get("message") and body["message"] != "Check errors array":
            return str(body["message"])
        if body.get("title"):
            return str(body["title"])
    elif isinstance(body, str) and body.strip():
        return body.strip()
    return f"Request failed with status code {response.status_code}"


def _error_code(response: httpx.Response) -> Optional[str]:
    body = _response_body(response)
    if not isinstance(body, dict):
        return None
    code = body.get("code") or body.get("errorCode")
    return str(code) if code is not None else None


def _member_from_payload(payload: Dict[str, Any]) -> ProjectMember:
    role_ids = payload.get("roleIds")
    if role_ids is None:
        role_ids = [role["id"] for role in payload.get("roles", []) if "id" in role]
    return ProjectMember(
        member_id=str(payload.get("id", "")),
        email=str(payload.get("email", "")),
        role_ids=list(role_ids),
    )


class MembershipClient:
    def __init__(
        self,
        base_url: str,
        retry_policy: Optional[RetryPolicy] = None,
        timeout_seconds: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._retry = retry_policy or RetryPolicy()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout_seconds)
        self._sleep = sleep
        self._logger = get_logger("bulkgrant.remote")

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "MembershipClient":
        return cls(
            settings.membership_base_url,
            retry_policy=RetryPolicy.from_settings(settings),
            timeout_seconds=settings.membership_timeout_seconds,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "MembershipClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def get_project_name(self, credential: str, project_id: str) -> str:
        path = f"/construction/admin/v1/projects/{_admin_project_id(project_id)}"
        response = await self._request("GET", path, credential)
        body = _response_body(response)
        if isinstance(body, dict) and body.get("name"):
            return str(body["name"])
        return project_id

    async def _member_page(self, credential: str, project_id: str, offset: int) -> List[Dict[str, Any]]:
        path = f"/construction/admin/v1/projects/{_admin_project_id(project_id)}/users"
        response = await self._request(
            "GET", path, credential, params={"limit": MEMBER_PAGE_SIZE, "offset": offset}
        )
        body = _response_body(response)
        results = body.get("results", []) if isinstance(body, dict) else body
        return results if isinstance(results, list) else []

    async def find_member(self, credential: str, project_id: str, email: str) -> Optional[ProjectMember]:
        wanted = email.lower()
        offset = 0
        while True:
            results = await self._member_page(credential, project_id, offset)
            for payload in results:
                if str(payload.get("email", "")).lower() == wanted:
                    return _member_from_payload(payload)
            if len(results) < MEMBER_PAGE_SIZE:
                return None
            offset += MEMBER_PAGE_SIZE

    async def list_members(self, credential: str, project_id: str) -> List[ProjectMember]:
        members: List[ProjectMember] = []
        offset = 0
        while True:
            results = await self._member_page(credential, project_id, offset)
            members.extend(_member_from_payload(payload) for payload in results)
            if len(results) < MEMBER_PAGE_SIZE:
                return members
            offset += MEMBER_PAGE_SIZE

    async def add_member(self, credential: str, project_id: str, email: str, role: str) -> Optional[str]:
        path = f"/construction/admin/v1/projects/{_admin_project_id(project_id)}/users"
        response = await self._request("POST", path, credential, json={"email": email, "roleIds": [role]})
        return response.headers.get(REQUEST_ID_HEADER)

    async def update_member_role(
        self, credential: str, project_id: str, member_id: str, role: str
    ) -> Optional[str]:
        path = f"/construction/admin/v1/projects/{_admin_project_id(project_id)}/users/{member_id}"
        response = await self._request("PATCH", path, credential, json={"roleIds": [role]})
        return response.headers.get(REQUEST_ID_HEADER)

    async def ensure_role(self, credential: str, project_id: str, email: str, role: str) -> EnsureResult:
        member = await self.find_member(credential, project_id, email)
        if member is not None and role in member.role_ids:
            return EnsureResult(action=TaskAction.SKIPPED, previous_role=role, request_id=None)
        if member is not None:
            previous_role = member.role_ids[0] if member.role_ids else None
            request_id = await self.update_member_role(credential, project_id, member.member_id, role)
            return EnsureResult(action=TaskAction.UPDATED, previous_role=previous_role, request_id=request_id)
        request_id = await self.add_member(credential, project_id, email, role)
        return EnsureResult(action=TaskAction.ADDED, previous_role=None, request_id=request_id)

    async def _request(
        self,
        method: str,
        path: str,
        credential: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {credential}", "Content-Type": "application/json"}
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await self._client.request(method, path, headers=headers, params=params, json=json)
            except httpx.TransportError as exc:
                if self._retry.can_retry(attempt):
                    delay = self._retry.backoff(attempt)
                    log_event(
                        self._logger,
                        "remote.transport_retry",
                        method=method,
                        path=path,
                        attempt=attempt,
                        delay_seconds=delay,
                        error=str(exc),
                    )
                    await self._sleep(delay)
                    continue
                raise UpstreamUnavailableError(f"{method} {path} failed: {exc}") from exc

            status = response.status_code
            if status < 400:
                return response

            request_id = response.headers.get(REQUEST_ID_HEADER)
            if status == 429:
                retry_after = self._retry.retry_after(response.headers.get("retry-after"))
                if self._retry.can_retry(attempt):
                    log_event(
                        self._logger,
                        "remote.rate_limited",
                        method=method,
                        path=path,
                        attempt=attempt,
                        retry_after_seconds=retry_after,
                    )
                    await self._sleep(retry_after)
                    continue
                raise RateLimitExceeded("Rate limit exceeded", retry_after, request_id)

            if status >= 500:
                if self._retry.can_retry(attempt):
                    delay = self._retry.backoff(attempt)
                    log_event(
                        self._logger,
                        "remote.server_error_retry",
                        method=method,
                        path=path,
                        status_code=status,
                        attempt=attempt,
                        delay_seconds=delay,
                    )
                    await self._sleep(delay)
                    continue
                raise UpstreamServerError(_error_message(response), status, request_id)

            log_event(
                self._logger,
                "remote.request_rejected",
                method=method,
                path=path,
                status_code=status,
                request_id=request_id,
            )
            raise MembershipError(
                _error_message(response),
                status_code=status,
                error_code=_error_code(response),
                request_id=request_id,
            )
