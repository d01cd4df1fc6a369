from services.fanout import FanoutService
from services.registry import ConnectionRegistry
from services.relay import Relay, build_relay
