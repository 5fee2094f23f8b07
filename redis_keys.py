PASTE_KEY = "{paste_id}"  # paste id - JSON string ciphertext (kept unprefixed for existing links)
LAN_ROOM_KEY = "lan:room:{room_id}"  # room id - JSON room record, 1h TTL renewed on write
LAN_MESSAGES_KEY = "lan:messages:{room_id}"  # room id - JSON list of signal messages, capped ring buffer

# **Example `lan:room:{id}` value**
# - `id` = `{roomId}`
# - `name` = display name
# - `devices` = list of {id, name, type, joinedAt, lastSeen} in join order
# - `createdAt` / `lastActivity` = epoch milliseconds
# - `version` = bumped on every conditional write
