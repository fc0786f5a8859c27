"""
Endpoints fed by the Discord gateway relay: thread messages written by
agents and already-parsed commands.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from schemas.command import CommandName, CommandRequest, CommandResponse
from schemas.discord import LocalMessage
from services.sync_runtime import SyncRuntime, get_runtime
from services.ticket_command_service import CommandError, TicketCommandService
from utils.auth_dependencies import require_relay_token

router = APIRouter(
    prefix="/relay",
    tags=["relay"],
    dependencies=[Depends(require_relay_token)],
)
logger = logging.getLogger(__name__)


@router.post("/messages", status_code=status.HTTP_202_ACCEPTED)
async def relay_message(
    message: LocalMessage,
    runtime: SyncRuntime = Depends(get_runtime),
):
    runtime.spawn(
        runtime.articles.forward_local_message(message),
        name=f"forward-{message.message_id}",
    )
    return {"ok": True}


def _require(value, field: str):
    if value is None or value == "":
        raise CommandError(f"Missing required option '{field}'.")
    return value


async def _dispatch(
    commands: TicketCommandService, request: CommandRequest
) -> str:
    name = request.command
    if name == CommandName.MAP_USER:
        return await commands.map_actor(
            _require(request.target_actor_id, "target_actor_id"),
            _require(request.email, "email"),
        )
    if name == CommandName.LIMIT_SET:
        return commands.set_attachment_limit(
            _require(request.key, "key"), _require(request.value, "value")
        )
    if name == CommandName.LIMIT_CLEAR:
        return commands.clear_attachment_limit(_require(request.key, "key"))

    thread_id = _require(request.thread_id, "thread_id")
    actor_id = request.actor_id
    if name == CommandName.CLOSE:
        return await commands.close(thread_id, actor_id)
    if name == CommandName.STATE:
        return await commands.set_state(
            thread_id, actor_id, _require(request.state, "state")
        )
    if name == CommandName.LOCK:
        return await commands.lock(thread_id, actor_id, until=request.until)
    if name == CommandName.ASSIGN:
        return await commands.assign(thread_id, actor_id, request.assignee_id)
    if name == CommandName.PRIORITY:
        return await commands.set_priority(
            thread_id, actor_id, _require(request.priority, "priority")
        )
    if name == CommandName.TIME:
        return await commands.log_time(
            thread_id, actor_id, _require(request.minutes, "minutes")
        )
    if name == CommandName.MERGE:
        return await commands.merge_into(
            thread_id, actor_id, _require(request.target_number, "target")
        )
    if name == CommandName.TAG_ADD:
        return await commands.add_tag(
            thread_id, actor_id, _require(request.tag, "tag")
        )
    if name == CommandName.TAG_REMOVE:
        return await commands.remove_tag(
            thread_id, actor_id, _require(request.tag, "tag")
        )
    raise CommandError(f"Unsupported command {name.value}.")


@router.post("/commands", response_model=CommandResponse)
async def relay_command(
    request: CommandRequest,
    runtime: SyncRuntime = Depends(get_runtime),
):
    try:
        reply = await _dispatch(runtime.commands, request)
    except CommandError as e:
        raise HTTPException(status_code=422, detail=e.message)
    return CommandResponse(reply=reply)
