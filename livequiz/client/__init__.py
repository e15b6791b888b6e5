"""Participant-side library: device identity, session subscription, answering."""

from .identity import Identity, IdentityStore
from .participant import ParticipantClient

__all__ = ['Identity', 'IdentityStore', 'ParticipantClient']
