from interview.batch import BatchScheduler, simulate_interviews
from interview.personas import generate_personas, load_personas
from interview.session import SessionRunner
from interview.store import JsonSessionStore, SessionStore

__all__ = [
    "BatchScheduler",
    "JsonSessionStore",
    "SessionRunner",
    "SessionStore",
    "generate_personas",
    "load_personas",
    "simulate_interviews",
]
