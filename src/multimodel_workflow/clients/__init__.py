"""Clients module - Role-to-client routing for the workflow."""

from .router import (
	ClientFactory,
	ClientNotInitializedError,
	ClientRole,
	ClientRouter,
	ClientRouterError,
	LLMClient,
	ProviderConfig,
	ProviderNotFoundError,
	create_client_router,
)

__all__ = [
	"ClientFactory",
	"ClientNotInitializedError",
	"ClientRole",
	"ClientRouter",
	"ClientRouterError",
	"LLMClient",
	"ProviderConfig",
	"ProviderNotFoundError",
	"create_client_router",
]
