CHAT_HISTORY_KEY = "chat_history" # JSON list of {"message", "user"}
ACTIVE_USERS_KEY = "active_users" # JSON list of usernames

CHAT_MESSAGES_CHANNEL = "chat_messages" # payload: one message
ACTIVE_USERS_CHANNEL = "active_users" # payload: full active users list

# Channel name -> event name sent to live viewers
VIEWER_EVENTS = {
    CHAT_MESSAGES_CHANNEL: "message",
    ACTIVE_USERS_CHANNEL: "users",
}
