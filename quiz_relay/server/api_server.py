"""FastAPI server exposing quiz sessions and the result store."""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi import Body, Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field, TypeAdapter, ValidationError
import uvicorn

from quiz_relay.constants.about import APP_ABOUT_TEXT, APP_LICENSE, APP_NAME, APP_VERSION
from quiz_relay.constants.network_constants import (
    COOKIE_MAX_AGE_SECONDS,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEVICE_COOKIE,
    USER_COOKIE,
    USER_HEADER,
)
from quiz_relay.core.markdown_math_renderer import renderer
from quiz_relay.core.models import Answer, LifecycleState, QuizQuestion, QuizResult, QuizType, SessionState
from quiz_relay.core.services.quiz_session import QuizUnavailableError
from quiz_relay.core.services.result_store import InMemoryResultStore, ResultStoreError
from quiz_relay.server.devices import DeviceContext, DeviceRegistry, is_valid_device_id

_ANSWERS_ADAPTER = TypeAdapter(list[Answer | None])
_RESULT_ADAPTER = TypeAdapter(QuizResult)


def _ensure_device(request: Request, response: Response, registry: DeviceRegistry) -> DeviceContext:
    device_id = request.cookies.get(DEVICE_COOKIE)
    if not is_valid_device_id(device_id):
        device_id = uuid4().hex
        response.set_cookie(
            key=DEVICE_COOKIE,
            value=device_id,
            max_age=COOKIE_MAX_AGE_SECONDS,
            samesite="lax",
            httponly=True,
        )
    device = registry.get_device(device_id)
    user_id = request.cookies.get(USER_COOKIE)
    if user_id:
        device.auth.sign_in(user_id)
    else:
        device.auth.sign_out()
    return device


def _request_user(request: Request) -> str:
    user_id = request.headers.get(USER_HEADER) or request.cookies.get(USER_COOKIE)
    if not user_id:
        raise HTTPException(status_code=401, detail="Sign in required.")
    return user_id


def _is_local_path(url: str) -> bool:
    # Browsers treat a backslash like a slash, so /\evil.example is off-site.
    if not url.startswith("/") or url.startswith("//") or "\\" in url:
        return False
    return not any(ord(char) < 0x20 or ord(char) == 0x7F for char in url)


def _session_view(state: SessionState) -> dict[str, object]:
    question_view = None
    if 0 <= state.current_question_index < len(state.questions):
        question_view = renderer.render_question(state.questions[state.current_question_index])
    showing_results = state.lifecycle_state is LifecycleState.SHOWING_RESULTS
    return {
        "quiz_id": state.quiz_id or None,
        "slug": state.slug or None,
        "quiz_type": state.quiz_type.value if state.quiz_id else None,
        "question_count": state.question_count,
        "current_question_index": state.current_question_index,
        "question": question_view,
        "answers": _ANSWERS_ADAPTER.dump_python(state.answers, mode="json"),
        "time_spent_per_question": list(state.time_spent_per_question),
        "lifecycle_state": state.lifecycle_state.value,
        "is_completed": state.is_completed,
        "score": state.score if showing_results else None,
        "requires_auth": state.requires_auth,
        "has_guest_result": state.has_guest_result,
        "auth_check_complete": state.auth_check_complete,
        "pending_auth_required": state.pending_auth_required,
        "completion_in_progress": state.completion_in_progress,
        "reconcile_state": state.reconcile_state.value,
        "error": state.error,
        "warning": state.warning,
        "results": (
            _RESULT_ADAPTER.dump_python(state.result, mode="json")
            if showing_results and state.result is not None
            else None
        ),
    }


class QuestionPayload(BaseModel):
    """Question as supplied by the client that loaded the quiz."""

    id: int | str
    question_text: str
    answer: str | None = None
    options: list[str] = Field(default_factory=list)


class StartPayload(BaseModel):
    quiz_id: str
    questions: list[QuestionPayload] = Field(default_factory=list)
    question_count: int | None = None
    resume: bool = False


class AnswerPayload(BaseModel):
    """Answer for one question; without ``is_correct`` the text is graded on the server."""

    index: int
    value: str
    time_spent: float = Field(default=0.0, ge=0)
    is_correct: bool | None = None
    similarity: float | None = None


class FinalAnswerPayload(BaseModel):
    value: str
    time_spent: float = Field(default=0.0, ge=0)
    is_correct: bool = False
    similarity: float | None = None


class CompletePayload(BaseModel):
    answers: list[FinalAnswerPayload | None] | None = None
    score: float | None = None


class AdvancePayload(BaseModel):
    delta: int = 1


class SignInPayload(BaseModel):
    redirect_path: str


def _get_registry_dependency(registry: DeviceRegistry):
    def dependency() -> DeviceRegistry:
        return registry

    return dependency


def _get_result_store_dependency(result_store: InMemoryResultStore):
    def dependency() -> InMemoryResultStore:
        return result_store

    return dependency


def create_api_app(registry: DeviceRegistry, result_store: InMemoryResultStore) -> FastAPI:
    """Create a FastAPI application wired to the device registry and result store."""
    app = FastAPI(
        title=f"{APP_NAME} API",
        version=APP_VERSION,
        description=APP_ABOUT_TEXT,
        license_info={"name": APP_LICENSE},
    )
    registry_dep = _get_registry_dependency(registry)
    result_store_dep = _get_result_store_dependency(result_store)

    # --- Quiz session ---

    @app.post("/quiz/{quiz_type}/{slug}/start", status_code=201)
    def start_quiz(
        quiz_type: QuizType,
        slug: str,
        payload: StartPayload,
        request: Request,
        response: Response,
        devices: DeviceRegistry = Depends(registry_dep),
    ) -> dict[str, object]:
        device = _ensure_device(request, response, devices)
        questions = [
            QuizQuestion(id=q.id, question_text=q.question_text, answer=q.answer, options=list(q.options))
            for q in payload.questions
        ]
        question_count = payload.question_count if payload.question_count is not None else len(questions)
        try:
            state = device.manager.initialize(
                payload.quiz_id,
                slug,
                quiz_type,
                question_count,
                quiz_data=questions,
                resume=payload.resume,
            )
        except QuizUnavailableError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return _session_view(state)

    @app.get("/quiz/state")
    def get_state(
        request: Request,
        response: Response,
        current_url: str | None = None,
        devices: DeviceRegistry = Depends(registry_dep),
    ) -> dict[str, object]:
        device = _ensure_device(request, response, devices)
        clean_url = current_url
        if current_url:
            clean_url = device.manager.handle_return(current_url)
        view = _session_view(device.manager.get_state())
        view["clean_url"] = clean_url
        return view

    @app.post("/quiz/answer")
    def record_answer(
        payload: AnswerPayload,
        request: Request,
        response: Response,
        devices: DeviceRegistry = Depends(registry_dep),
    ) -> dict[str, object]:
        manager = _ensure_device(request, response, devices).manager
        if payload.is_correct is None:
            state = manager.record_text_answer(payload.index, payload.value, payload.time_spent)
        else:
            answer = Answer(
                value=payload.value,
                time_spent=payload.time_spent,
                is_correct=payload.is_correct,
                similarity=payload.similarity,
            )
            state = manager.record_answer(payload.index, answer)
        return _session_view(state)

    @app.post("/quiz/advance")
    def advance(
        payload: AdvancePayload,
        request: Request,
        response: Response,
        devices: DeviceRegistry = Depends(registry_dep),
    ) -> dict[str, object]:
        manager = _ensure_device(request, response, devices).manager
        return _session_view(manager.advance(payload.delta))

    @app.post("/quiz/complete")
    def complete(
        payload: CompletePayload,
        request: Request,
        response: Response,
        devices: DeviceRegistry = Depends(registry_dep),
    ) -> dict[str, object]:
        manager = _ensure_device(request, response, devices).manager
        final_answers = None
        if payload.answers is not None:
            final_answers = [
                None
                if item is None
                else Answer(
                    value=item.value,
                    time_spent=item.time_spent,
                    is_correct=item.is_correct,
                    similarity=item.similarity,
                )
                for item in payload.answers
            ]
        return _session_view(manager.complete(final_answers, payload.score))

    @app.post("/quiz/reset")
    def reset(
        request: Request,
        response: Response,
        devices: DeviceRegistry = Depends(registry_dep),
    ) -> dict[str, object]:
        manager = _ensure_device(request, response, devices).manager
        return _session_view(manager.reset())

    @app.post("/quiz/retry")
    def retry_loading_results(
        request: Request,
        response: Response,
        devices: DeviceRegistry = Depends(registry_dep),
    ) -> dict[str, object]:
        manager = _ensure_device(request, response, devices).manager
        return _session_view(manager.retry_loading_results())

    @app.post("/quiz/sign-in")
    def require_authentication(
        payload: SignInPayload,
        request: Request,
        response: Response,
        devices: DeviceRegistry = Depends(registry_dep),
    ) -> dict[str, object]:
        if not _is_local_path(payload.redirect_path):
            raise HTTPException(status_code=422, detail="Redirect path must be a local path.")
        device = _ensure_device(request, response, devices)
        return_url = device.manager.require_authentication(payload.redirect_path)
        return {
            "redirect_to": device.auth.last_redirect if return_url is not None else None,
            "return_url": return_url,
            "state": _session_view(device.manager.get_state()),
        }

    # --- Sign-in provider stand-in ---

    @app.get("/auth/sign-in")
    def sign_in(callback_url: str, user_id: str | None = None) -> RedirectResponse:
        if not _is_local_path(callback_url):
            raise HTTPException(status_code=422, detail="Callback URL must be a local path.")
        redirect = RedirectResponse(callback_url, status_code=303)
        redirect.set_cookie(
            key=USER_COOKIE,
            value=user_id or uuid4().hex,
            max_age=COOKIE_MAX_AGE_SECONDS,
            samesite="lax",
            httponly=True,
        )
        return redirect

    @app.post("/auth/sign-out")
    def sign_out(
        request: Request,
        response: Response,
        devices: DeviceRegistry = Depends(registry_dep),
    ) -> dict[str, object]:
        device = _ensure_device(request, response, devices)
        device.manager.handle_sign_out()
        device.auth.sign_out()
        response.delete_cookie(USER_COOKIE)
        return {"signed_out": True}

    # --- Result store ---

    @app.post("/results", status_code=201)
    def submit_result(
        request: Request,
        payload: dict[str, Any] = Body(...),
        store: InMemoryResultStore = Depends(result_store_dep),
    ) -> dict[str, object]:
        user_id = _request_user(request)
        try:
            result = _RESULT_ADAPTER.validate_python(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=exc.errors(include_url=False)) from exc
        try:
            store.submit_result(result, user_id)
        except ResultStoreError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"accepted": True}

    @app.get("/results/{quiz_id}/{slug}")
    def fetch_result(
        quiz_id: str,
        slug: str,
        request: Request,
        store: InMemoryResultStore = Depends(result_store_dep),
    ) -> dict[str, object]:
        user_id = _request_user(request)
        result = store.fetch_result(quiz_id, slug, user_id)
        if result is None:
            raise HTTPException(status_code=404, detail="No saved results found.")
        return _RESULT_ADAPTER.dump_python(result, mode="json")

    return app


def run_api_server(
    app: FastAPI,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    log_level: str = "info",
) -> None:
    """Serve the FastAPI application until interrupted."""
    config = uvicorn.Config(app=app, host=host, port=port, log_level=log_level)
    server = uvicorn.Server(config)
    server.run()
