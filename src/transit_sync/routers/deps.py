"""Request-scoped access to the application context."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from transit_sync.context import TransitContext
from transit_sync.services.catalog import TransitCatalog


def get_context(request: Request) -> TransitContext:
    return request.app.state.context


def get_catalog(request: Request) -> TransitCatalog:
    return request.app.state.context.catalog


ContextDep = Annotated[TransitContext, Depends(get_context)]
CatalogDep = Annotated[TransitCatalog, Depends(get_catalog)]
