from models.broker import Broker, InMemoryBroker, LiveEvent, RedisBroker
from models.history import HistorySnapshot, HistoryStore, InMemoryHistoryStore, RedisHistoryStore
from models.models import Connection, Room
