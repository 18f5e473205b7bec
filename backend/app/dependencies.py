"""Wiring for the nudge pipeline's collaborators, shared by the API and the scheduler"""
from functools import lru_cache
from app.agents.action.nudger import NudgeNotificationProcessor
from app.agents.cognition.interpreter import ResponseInterpreter
from app.agents.cognition.responder import NudgeResponder
from app.database import get_supabase
from app.repositories.nudge_repository import NudgeStore, SupabaseNudgeRepository
from app.services.notification import ExpoPushDispatcher, PushDispatcher
from app.services.nudge_service import NudgeService
from app.services.user_directory import UserDirectory


@lru_cache
def get_nudge_store() -> NudgeStore:
    return SupabaseNudgeRepository(get_supabase())


@lru_cache
def get_push_dispatcher() -> PushDispatcher:
    return ExpoPushDispatcher(get_supabase())


@lru_cache
def get_user_directory() -> UserDirectory:
    return UserDirectory(get_supabase())


@lru_cache
def get_response_interpreter() -> ResponseInterpreter:
    return ResponseInterpreter()


def get_notification_processor() -> NudgeNotificationProcessor:
    return NudgeNotificationProcessor(
        store=get_nudge_store(),
        dispatcher=get_push_dispatcher(),
        user_directory=get_user_directory(),
    )


def get_nudge_responder() -> NudgeResponder:
    return NudgeResponder(
        store=get_nudge_store(),
        user_directory=get_user_directory(),
        interpreter=get_response_interpreter(),
    )


def get_nudge_service() -> NudgeService:
    return NudgeService(get_nudge_store())
