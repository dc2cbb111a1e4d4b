REDIS_MESSAGES_KEY = "room:messages:{slug}" # room id - list of JSON message records, append order

# **Example `room:messages:{id}` element**
# - `id` = message uuid (hex)
# - `roomId` = `{roomId}`
# - `sender` = display name at send time
# - `content` = text, or an opaque audio reference when `kind` is `audio`
# - `kind` = `text` | `audio`
# - `timestamp` = ISO timestamp assigned by the server (UTC)
# - `duration` = audio length in seconds (audio only, optional)
