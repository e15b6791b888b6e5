"""Socket.IO namespace, rooms and event names shared by server and clients."""

NAMESPACE = '/ws'

SESSION_ROOM = 'quiz:session'
HOST_ROOM = 'quiz:host'

# server -> client
STATE_UPDATE = 'state_update'
RANKING_UPDATE = 'ranking_update'
ANSWER_PROGRESS = 'answer_progress'
FLUSH_FAILED = 'flush_failed'
SESSION_CLEARED = 'session_cleared'

# client -> server
JOIN_SESSION = 'join_session'
ANSWER = 'answer'
GET_STATE = 'get_state'
