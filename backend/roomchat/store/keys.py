# Presence and membership (owned by the chat coordinator)
CONNECTED_USER_KEY = "connected_user:{user_id}"  # user id - authoritative connection id
USER_ROOM_KEY = "user_room:{user_id}"  # user id - current room id
ROOM_USERS_KEY = "room_users:{room_id}"  # room id - set of online user ids

# Rooms
ROOM_KEY = "room:{room_id}"  # room id - hash
ROOM_PARTICIPANTS_KEY = "room:{room_id}:participants"  # room id - set of user ids
ROOM_LIST_KEY = "room:list"  # zset of room ids scored by createdAt

# Messages
MESSAGE_KEY = "message:{message_id}"  # message id - hash
ROOM_MESSAGES_KEY = "message:room:{room_id}:messages"  # room id - append-only list of ids
ROOM_TIMELINE_KEY = "message:room:{room_id}:timeline"  # room id - zset of ids by timestamp
MESSAGE_READERS_KEY = "message:{message_id}:readers"  # message id - set of user ids
MESSAGE_REACTION_KEYS_KEY = "message:{message_id}:reaction_keys"  # message id - set of reaction keys
MESSAGE_REACTION_KEY = "message:{message_id}:reactions:{reaction}"  # set of user ids

# Users, sessions and files
USER_KEY = "user:{user_id}"  # user id - hash
USER_EMAIL_KEY = "user:email:{email}"  # email - user id
USER_SESSION_KEY = "user_session:{user_id}"  # user id - active session id
FILE_KEY = "file:{file_id}"  # file id - hash

# **Example `message:{id}` hash fields**
# - `room` = room id
# - `sender` = user id, or the literals `system` / `ai`
# - `type` = text | file | system | ai
# - `timestamp` = epoch milliseconds
# - `mentions` / `metadata` = json strings
# - `isDeleted` = "0" | "1"
