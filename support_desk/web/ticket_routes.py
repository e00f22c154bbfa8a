"""CRUD endpoints for support tickets."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..services import Services
from .dependencies import get_services
from .schemas import TicketCreateRequest, TicketUpdateRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tickets", tags=["tickets"])


def _not_found(ticket_id: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"工单 #{ticket_id} 不存在")


@router.get("")
async def list_tickets(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    category: Optional[str] = None,
    priority: Optional[str] = None,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    tickets = services.tickets.list(status=status_filter, category=category, priority=priority)
    return {"tickets": [ticket.to_dict() for ticket in tickets], "total": len(tickets)}


@router.get("/stats")
async def ticket_stats(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return services.tickets.stats()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    ticket = await asyncio.to_thread(
        services.tickets.create,
        title=payload.title,
        description=payload.description,
        category=payload.category,
        priority=payload.priority,
    )
    return ticket.to_dict()


@router.get("/{ticket_id}")
async def get_ticket(ticket_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    ticket = services.tickets.get(ticket_id)
    if ticket is None:
        raise _not_found(ticket_id)
    return ticket.to_dict()


@router.patch("/{ticket_id}")
async def update_ticket(
    ticket_id: str,
    payload: TicketUpdateRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    ticket = await asyncio.to_thread(
        services.tickets.update, ticket_id, **payload.model_dump(exclude_none=True)
    )
    if ticket is None:
        raise _not_found(ticket_id)
    return ticket.to_dict()


@router.delete("/{ticket_id}")
async def delete_ticket(ticket_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    if not await asyncio.to_thread(services.tickets.delete, ticket_id):
        raise _not_found(ticket_id)
    return {"success": True}
