"""
Client Router - binds the planner, coder and reviewer roles to model clients.

Each role gets its own client instance, even when two roles share a
provider and model. Initialization is all-or-nothing: a role that fails
to resolve leaves the router without any bindings.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field

from ..plans.models import WorkflowConfig

logger = logging.getLogger(__name__)


class ClientRole(str, Enum):
	"""The three fixed model personas."""
	PLANNER = "planner"
	CODER = "coder"
	REVIEWER = "reviewer"


class ProviderConfig(BaseModel):
	"""A configured model provider."""
	name: str
	models: list[str] = Field(default_factory=list)
	base_url: Optional[str] = Field(default=None)
	api_key_env: Optional[str] = Field(default=None, description="Environment variable holding the API key")


class LLMClient(Protocol):
	"""The model client surface the workflow core relies on."""

	def set_model(self, model: str) -> None: ...

	def get_current_model(self) -> str: ...

	def get_context_size(self) -> int: ...

	async def clear_context(self) -> None: ...

	async def chat(self, messages: list[dict], options: Optional[dict] = None) -> dict[str, Any]: ...


class ClientFactory(Protocol):
	"""Builds a client for a provider; the router sets the model afterwards."""

	async def __call__(self, provider: ProviderConfig, model: str) -> LLMClient: ...


class ClientRouterError(Exception):
	"""Base error for client routing."""
	pass


class ProviderNotFoundError(ClientRouterError):
	"""Raised when a role references an unknown provider."""

	def __init__(self, provider: str, role: ClientRole, available: list[str]):
		self.provider = provider
		self.role = role
		self.available = available
		super().__init__(
			f"Provider '{provider}' not found for workflow role '{role.value}'. "
			f"Available providers: {', '.join(available) or 'none'}"
		)


class ClientNotInitializedError(ClientRouterError):
	"""Raised when switching to a role that has no client."""
	pass


@dataclass
class ClientEntry:
	client: LLMClient
	provider: str
	model: str
	role: ClientRole


class ClientRouter:
	"""
	Owns one client per workflow role and tracks which one is active.

	Usage:
		router = ClientRouter(factory)
		await router.initialize_from_config(workflow_config, providers)
		planner = router.switch_to(ClientRole.PLANNER)
	"""

	def __init__(self, factory: ClientFactory):
		self._factory = factory
		self._clients: dict[ClientRole, ClientEntry] = {}
		self._active_role: Optional[ClientRole] = None
		self._providers: dict[str, ProviderConfig] = {}

	async def initialize_from_config(
		self,
		workflow_config: WorkflowConfig,
		providers: list[ProviderConfig],
	) -> None:
		"""
		Build clients for all three roles.

		Args:
			workflow_config: Provider/model selection per role
			providers: Known providers; a provider's model list is extended
				in place when a role asks for a model it does not declare

		Raises:
			ProviderNotFoundError: If a role names an unknown provider. No
				role is bound in that case.
		"""
		provider_index = {p.name: p for p in providers}
		selections = [
			(ClientRole.PLANNER, workflow_config.planning_model.provider, workflow_config.planning_model.model),
			(ClientRole.CODER, workflow_config.coding_model.provider, workflow_config.coding_model.model),
			(ClientRole.REVIEWER, workflow_config.review_model.provider, workflow_config.review_model.model),
		]

		staged: dict[ClientRole, ClientEntry] = {}
		try:
			for role, provider_name, model in selections:
				staged[role] = await self._build_client(provider_index, role, provider_name, model)
		except BaseException:
			await self._release(staged.values())
			raise

		self._providers = provider_index
		self._clients = staged
		self._active_role = None

		logger.info(
			"Client router initialized: "
			+ ", ".join(f"{e.role.value}={e.provider}/{e.model}" for e in staged.values())
		)

	async def _build_client(
		self,
		provider_index: dict[str, ProviderConfig],
		role: ClientRole,
		provider_name: str,
		model: str,
	) -> ClientEntry:
		provider = provider_index.get(provider_name)
		if provider is None:
			raise ProviderNotFoundError(provider_name, role, list(provider_index))

		# Many OpenAI-compatible endpoints accept arbitrary model ids
		if model not in provider.models:
			logger.warning(
				f"Model '{model}' not in configured models for provider '{provider_name}'. "
				f"Adding it dynamically. Configured models: {', '.join(provider.models)}"
			)
			provider.models.append(model)

		client = await self._factory(provider, model)
		client.set_model(model)

		logger.debug(f"Initialized {role.value} client ({provider_name}/{model})")
		return ClientEntry(client=client, provider=provider_name, model=model, role=role)

	async def _release(self, entries) -> None:
		"""Close clients built during a failed initialization."""
		for entry in entries:
			close = getattr(entry.client, "aclose", None)
			if close is None:
				continue
			try:
				await close()
			except Exception as e:
				logger.warning(f"Failed to close {entry.role.value} client: {e}")

	def switch_to(self, role: ClientRole) -> LLMClient:
		"""Make a role's client the active one and return it."""
		entry = self._clients.get(role)
		if not entry:
			raise ClientNotInitializedError(
				f"Client for role '{role.value}' not initialized. Call initialize_from_config first."
			)

		self._active_role = role
		logger.info(f"Switched active client to {role.value} ({entry.provider}/{entry.model})")
		return entry.client

	def get_active(self) -> Optional[LLMClient]:
		if self._active_role is None:
			return None
		entry = self._clients.get(self._active_role)
		return entry.client if entry else None

	def get_active_role(self) -> Optional[ClientRole]:
		return self._active_role

	def get_client(self, role: ClientRole) -> Optional[LLMClient]:
		entry = self._clients.get(role)
		return entry.client if entry else None

	def get_client_info(self, role: ClientRole) -> Optional[dict]:
		entry = self._clients.get(role)
		if not entry:
			return None
		return {"provider": entry.provider, "model": entry.model}

	def is_initialized(self) -> bool:
		return all(role in self._clients for role in ClientRole)

	def get_status(self) -> dict[str, Optional[dict]]:
		"""Provider, model and active flag for every role."""
		status: dict[str, Optional[dict]] = {}
		for role in ClientRole:
			entry = self._clients.get(role)
			status[role.value] = {
				"provider": entry.provider,
				"model": entry.model,
				"active": self._active_role == role,
			} if entry else None
		return status

	async def clear_all_contexts(self) -> None:
		"""
		Reset every client's context concurrently.

		The first failure propagates; resets that already finished stay done.
		"""
		await asyncio.gather(*(entry.client.clear_context() for entry in self._clients.values()))

	def dispose(self) -> None:
		"""Drop all bindings. Underlying connections are the clients' concern."""
		self._clients.clear()
		self._active_role = None
		self._providers.clear()


async def create_client_router(
	workflow_config: WorkflowConfig,
	providers: list[ProviderConfig],
	factory: ClientFactory,
) -> ClientRouter:
	"""Create and initialize a router in one step."""
	router = ClientRouter(factory)
	await router.initialize_from_config(workflow_config, providers)
	return router
