from fastapi import Request

from bookvault.services.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    """ServiceContainer created in the app lifespan."""
    return request.app.state.container
