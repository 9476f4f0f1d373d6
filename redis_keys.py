REDIS_ROOM_KEY = "room:doc:{slug}" # room id - JSON room document

# **`room:doc:{id}` document fields**
# - `roomId` = caller supplied id (trimmed, case-sensitive)
# - `owner` = display name of the creator, never changes
# - `users` = list of {username, connectionId, isMuted, joinedAt}
# - `messages` = append-only list of {author, text, timestamp}
# - `videoState` = {url, playing, position, updatedAt}
# No TTL: a room lives until its owner deletes it.
