# ------------ Config defaults ------------
UNIVERSE = "universe"         # reserved channel key aggregating every city
HISTORY_SIZE = 101            # last N pictures kept per channel key
SUBSCRIBER_QUEUE_SIZE = 50    # bounded per-connection outbound queue
BROKER_QUEUE_SIZE = 1000      # bounded per-listener broker queue
REDIS_CHANNEL = "fanout:pics" # single pub/sub channel carrying every city event
REDIS_RETRY_SECONDS = 1.0     # pause before the redis listener resubscribes
# -----------------------------------------
