"""
Entity Store Client
===================

Async REST adapter for the entity store: opaque CRUD per named collection
(Recipe, RecipeCategory, MainIngredient, IngredientImage).

    GET    {base}/api/entities/{collection}?sort=name         list
    GET    {base}/api/entities/{collection}?q={json}          filter
    POST   {base}/api/entities/{collection}                   create
    PATCH  {base}/api/entities/{collection}/{id}              update
    DELETE {base}/api/entities/{collection}/{id}              delete

No retries here: every call is wrapped by ResilientExecutor (through
EntityWriter). Failures surface as TransportError (HTTP status) or
NetworkUnavailable (connection refused, DNS, offline). Timeouts propagate
as asyncio.TimeoutError and are classified by the executor.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import aiohttp

from config import ENTITY_STORE_TOKEN, ENTITY_STORE_URL, get_config_value
from errors import NetworkUnavailable, TransportError, http_error
from tools.logging_utils import get_logger

logger = get_logger(__name__)


class RestEntityStore:
    """
    Entity store over HTTP.

    A ClientSession is opened per call so the store can be shared freely
    between event loops (CLI runs, tests).
    """

    DEFAULT_TIMEOUT = 30

    def __init__(self, base_url: str = None, token: str = None, timeout: int = None):
        self.base_url = (base_url or ENTITY_STORE_URL).rstrip('/')
        self.api_base = f"{self.base_url}/api/entities"
        self.token = token if token is not None else ENTITY_STORE_TOKEN
        self.timeout = timeout or get_config_value('connection', 'timeout_seconds', self.DEFAULT_TIMEOUT)
        logger.debug(f"RestEntityStore initialized: base_url={self.base_url}")

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Perform one HTTP request.

        Returns:
            Parsed JSON response, or None for empty bodies

        Raises:
            TransportError: Non-2xx status
            NetworkUnavailable: The store could not be reached
        """
        url = f"{self.api_base}{endpoint}"
        operation = f"{method} {endpoint}"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method,
                    url,
                    json=data,
                    params=params,
                    headers=self._headers(),
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status >= 400:
                        body = await response.text()
                        raise http_error("Entity store", response.status, body, operation)
                    text = await response.text()
                    if response.status == 204 or not text:
                        return None
                    try:
                        return json.loads(text)
                    except json.JSONDecodeError as e:
                        raise TransportError(
                            f"Invalid JSON from entity store: {e}",
                            operation=operation,
                            status_code=response.status,
                            response_body=text,
                        ) from e
        except asyncio.TimeoutError:
            raise
        except aiohttp.ClientConnectionError as e:
            raise NetworkUnavailable(f"Entity store unreachable: {e}", operation=operation) from e
        except aiohttp.ClientError as e:
            raise TransportError(f"HTTP error: {e}", operation=operation) from e

    async def list(self, entity_name: str, sort: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {'sort': sort} if sort else None
        return await self._request("GET", f"/{entity_name}", params=params) or []

    async def filter(self, entity_name: str, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        params = {'q': json.dumps(query)}
        return await self._request("GET", f"/{entity_name}", params=params) or []

    async def create(self, entity_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        record = await self._request("POST", f"/{entity_name}", data=data)
        logger.info(f"✅ Created {entity_name} {(record or {}).get('id', '')}")
        return record

    async def update(self, entity_name: str, entity_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PATCH", f"/{entity_name}/{entity_id}", data=patch)

    async def delete(self, entity_name: str, entity_id: str) -> None:
        await self._request("DELETE", f"/{entity_name}/{entity_id}")
