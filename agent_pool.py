"""
Agent Pool - source of routable agent snapshots.

The routing engine only needs two calls:

    await pool.get_available_agents()      -> List[AgentSnapshot]
    await pool.increment_agent_load(id)    -> None

InMemoryAgentPool keeps agents in-process (embedding, tests).
HttpAgentPool reads them from the agent registry service over HTTP.
"""

import asyncio
import logging
import threading
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional

import httpx

from routing_models import AgentSnapshot

logger = logging.getLogger("routing.pool")

UNAVAILABLE_STATUSES = {"unhealthy", "offline"}


def is_available(agent: AgentSnapshot) -> bool:
    """Healthy enough and below its concurrency limit."""
    if agent.health.status in UNAVAILABLE_STATUSES:
        return False
    return agent.load.current_load < agent.load.max_concurrency


class AgentPool:
    """Interface for agent pool providers"""

    async def get_available_agents(self) -> List[AgentSnapshot]:
        raise NotImplementedError

    async def increment_agent_load(self, agent_id: str) -> None:
        raise NotImplementedError


class InMemoryAgentPool(AgentPool):
    """Thread-safe in-process pool"""

    def __init__(self, agents: Optional[Iterable[AgentSnapshot]] = None):
        self._lock = threading.Lock()
        self._agents: Dict[str, AgentSnapshot] = {}
        for agent in agents or ():
            self._agents[agent.id] = agent

    def add_agent(self, agent: AgentSnapshot) -> None:
        with self._lock:
            self._agents[agent.id] = agent
        logger.info(f"Agent registered in pool: {agent.id} ({agent.provider}/{agent.model})")

    def remove_agent(self, agent_id: str) -> bool:
        with self._lock:
            return self._agents.pop(agent_id, None) is not None

    def get_agent(self, agent_id: str) -> Optional[AgentSnapshot]:
        with self._lock:
            return self._agents.get(agent_id)

    def set_health(self, agent_id: str, status: str) -> None:
        with self._lock:
            agent = self._agents.get(agent_id)
            if agent is not None:
                self._agents[agent_id] = replace(agent, health=replace(agent.health, status=status))

    async def get_available_agents(self) -> List[AgentSnapshot]:
        with self._lock:
            agents = list(self._agents.values())
        return [a for a in agents if is_available(a)]

    async def increment_agent_load(self, agent_id: str) -> None:
        with self._lock:
            agent = self._agents.get(agent_id)
            if agent is None:
                return
            load = replace(agent.load, current_load=agent.load.current_load + 1,
                           requests_per_minute=agent.load.requests_per_minute + 1)
            self._agents[agent_id] = replace(agent, load=load)

    async def decrement_agent_load(self, agent_id: str, response_time_ms: Optional[float] = None) -> None:
        """Release one slot; folds the response time into a moving average."""
        with self._lock:
            agent = self._agents.get(agent_id)
            if agent is None:
                return
            average = agent.load.average_response_time
            if response_time_ms is not None:
                average = average * 0.8 + response_time_ms * 0.2
            load = replace(agent.load, current_load=max(0, agent.load.current_load - 1),
                           average_response_time=average)
            self._agents[agent_id] = replace(agent, load=load)

    def get_pool_stats(self) -> Dict[str, Any]:
        with self._lock:
            agents = list(self._agents.values())
        by_status: Dict[str, int] = {}
        for agent in agents:
            by_status[agent.health.status] = by_status.get(agent.health.status, 0) + 1
        return {
            "total_agents": len(agents),
            "available_agents": sum(1 for a in agents if is_available(a)),
            "by_status": by_status,
            "total_load": sum(a.load.current_load for a in agents),
        }


class HttpAgentPool(AgentPool):
    """
    Agent pool backed by the agent registry service.

    Fetch failures are logged and reported as an empty pool; load increments
    are fire-and-forget.
    """

    def __init__(self, registry_url: str = "http://localhost:3002", api_key: str = "",
                 timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.registry_url = registry_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.registry_url, timeout=self.timeout,
                                 headers=self._headers(), transport=self._transport)

    async def get_available_agents(self) -> List[AgentSnapshot]:
        try:
            async with self._client() as client:
                response = await client.get("/api/agents/available")
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException:
            logger.error(f"Agent registry timed out after {self.timeout}s")
            return []
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch agents from {self.registry_url}: {e}")
            return []

        records = payload.get("agents", []) if isinstance(payload, dict) else payload
        agents = []
        for record in records or []:
            try:
                agent = AgentSnapshot.from_dict(record)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed agent record {record!r}: {e}")
                continue
            if is_available(agent):
                agents.append(agent)
        return agents

    async def increment_agent_load(self, agent_id: str) -> None:
        try:
            async with self._client() as client:
                response = await client.post(f"/api/agents/{agent_id}/load", json={"delta": 1})
                if response.status_code >= 400:
                    logger.warning(f"Load increment for {agent_id} rejected: {response.status_code}")
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            logger.warning(f"Load increment for {agent_id} failed: {e}")
