from __future__ import annotations

import base64

import httpx

from llm_orchestrator.config import settings
from llm_orchestrator.models.events import LlmCallEvent
from llm_orchestrator.models.results import Err, Ok, PublishError, Result
from llm_orchestrator.services import logger as log_service


class HttpLlmCallPublisher:
    """Publish ``llm.call`` events through the Pub/Sub REST ``:publish`` endpoint."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        project_id: str | None = None,
        topic: str | None = None,
        access_token: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or settings.pubsub_base_url).rstrip("/")
        self.project_id = project_id or settings.gcp_project_id
        self.topic = topic or settings.llm_call_topic
        self.access_token = access_token if access_token is not None else settings.pubsub_access_token
        self.timeout = timeout or settings.publish_timeout_seconds
        self._client = client

    @property
    def publish_url(self) -> str:
        return f"{self.base_url}/projects/{self.project_id}/topics/{self.topic}:publish"

    def _body(self, event: LlmCallEvent) -> dict:
        return {
            "messages": [
                {
                    "data": base64.b64encode(event.encode()).decode("ascii"),
                    "attributes": {"type": event.type, "provider": event.provider.value},
                }
            ]
        }

    async def _post(self, client: httpx.AsyncClient, event: LlmCallEvent) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        response = await client.post(self.publish_url, json=self._body(event), headers=headers)
        response.raise_for_status()
        return response

    async def publish_llm_call(self, event: LlmCallEvent) -> Result[None, PublishError]:
        if not self.project_id:
            return Err(PublishError("PUBLISH_ERROR", "GCP_PROJECT_ID is not configured"))
        try:
            if self._client is not None:
                await self._post(self._client, event)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    await self._post(client, event)
        except httpx.HTTPStatusError as exc:
            return Err(
                PublishError("PUBLISH_ERROR", f"Pub/Sub returned HTTP {exc.response.status_code}")
            )
        except httpx.HTTPError as exc:
            return Err(PublishError("PUBLISH_ERROR", str(exc) or exc.__class__.__name__))

        log_service.log_event(
            event_type="llm_call_published",
            message="LLM call event published",
            research_id=event.research_id,
            provider=event.provider.value,
        )
        return Ok(None)


class LoggingLlmCallPublisher:
    """Local development publisher: records the event in the log only."""

    async def publish_llm_call(self, event: LlmCallEvent) -> Result[None, PublishError]:
        log_service.log_event(
            event_type="llm_call_published",
            message="LLM call event logged (no broker configured)",
            **event.to_payload(),
        )
        return Ok(None)
