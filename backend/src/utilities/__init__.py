from utilities.constants import *  # noqa: F401,F403
from utilities.errors import TransportError
from utilities.utility_functions import (
    now_ts,
    make_join_ack,
    make_pong,
    make_history,
    make_live,
    make_error,
)
