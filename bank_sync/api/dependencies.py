"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Request
from bank_sync.infrastructure.clients.aggregator import AggregatorClient
from bank_sync.services.session import SessionCoordinator


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_aggregator_client() -> AggregatorClient:
    """Provide aggregator gateway client instance"""
    return AggregatorClient()


def get_session_coordinator(client: AggregatorClient = Depends(get_aggregator_client)) -> SessionCoordinator:
    """Provide data-fetch session coordinator bound to the gateway client"""
    return SessionCoordinator(client)
