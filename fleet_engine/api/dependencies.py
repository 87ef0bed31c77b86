from fastapi import Depends, Header

from fleet_engine.container import Container, get_container
from fleet_engine.node_manager.models import Node


def get_node_manager(container: Container = Depends(get_container)):
    return container.node_manager


def get_dispatcher(container: Container = Depends(get_container)):
    return container.dispatcher


def get_authenticated_node(
    x_agent_id: str = Header(default=""),
    x_agent_token: str = Header(default=""),
    container: Container = Depends(get_container),
) -> Node:
    """Resolves X-Agent-ID / X-Agent-Token to a node or fails with 401."""
    return container.node_manager.authenticate(x_agent_id, x_agent_token)
