from .session import ChatTurn, OracleSession
from .store import OracleSessionStore

__all__ = ["ChatTurn", "OracleSession", "OracleSessionStore"]
