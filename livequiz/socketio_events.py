from flask_socketio import join_room, leave_room, emit
from flask import current_app, request
from typing import Dict
import time

from livequiz import socketio, get_host_controller
from livequiz import channels

_sid_roles: Dict[str, str] = {}


def _get_sid() -> str:
    return request.sid  # type: ignore


def handle_connect():
    emit('connected', {'message': f'Connected to {channels.NAMESPACE}'})


def handle_disconnect(*args):
    role = _sid_roles.pop(_get_sid(), None)
    if role == 'host':
        current_app.logger.info("[host-disconnect] host display left")


def handle_join_session(data):
    role = (data or {}).get('role') or 'participant'
    if role not in ('participant', 'host'):
        emit('error', {'message': 'role must be participant or host'})
        return
    join_room(channels.SESSION_ROOM)
    if role == 'host':
        join_room(channels.HOST_ROOM)
    _sid_roles[_get_sid()] = role
    # Late joiners get the current state right away instead of waiting for a change
    emit('joined', {'room': channels.SESSION_ROOM, 'role': role})
    emit(channels.STATE_UPDATE, get_host_controller().snapshot())


def handle_leave_session(data=None):
    leave_room(channels.SESSION_ROOM)
    if _sid_roles.pop(_get_sid(), None) == 'host':
        leave_room(channels.HOST_ROOM)
    emit('left', {'room': channels.SESSION_ROOM})


def handle_answer(data):
    """Raw answer event from a participant; fire-and-forget for the sender."""
    received_at = time.time()
    accepted = get_host_controller().ingest_answer(data, received_at=received_at)
    return {'accepted': accepted}


def handle_get_state(data=None):
    """Reconnect poll: acknowledge with the current snapshot."""
    return get_host_controller().snapshot()


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on the '/ws' namespace. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    namespaces = [channels.NAMESPACE]
    if testing:
        namespaces.append('/')
    for ns in namespaces:
        socketio.on_event('connect', handle_connect, namespace=ns)
        socketio.on_event('disconnect', handle_disconnect, namespace=ns)
        socketio.on_event(channels.JOIN_SESSION, handle_join_session, namespace=ns)
        socketio.on_event('leave_session', handle_leave_session, namespace=ns)
        socketio.on_event(channels.ANSWER, handle_answer, namespace=ns)
        socketio.on_event(channels.GET_STATE, handle_get_state, namespace=ns)
        socketio.on_event('ping', handle_ping, namespace=ns)
