from fastapi import FastAPI, Request, Form
from fastapi.responses import JSONResponse
from datetime import datetime, timedelta, timezone
import uvicorn
import logging

from config import EXAM_CONFIG, LOG_LEVEL, SESSION_COOKIE, SESSION_MAX_AGE
from data.test_data import TEST_VARIANTS
from notifier import TelegramNotifier
from session import SessionContext, SessionStateError, TestSession

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(title="IELTS Mock Test")

# Per-test overrides of EXAM_CONFIG; empty in production
app.state.exam_config = {}
app.state.notifier = TelegramNotifier()
app.state.result_sink = None

# Login contexts by session cookie
CONTEXTS = {}


# Initialize database on startup
@app.on_event("startup")
async def startup():
    from database import init_db
    try:
        init_db()
    except Exception as e:
        logger.error("Database initialization error: %s", e)
        logger.warning("Running without database - results will only be logged")


@app.on_event("shutdown")
async def shutdown():
    for context in CONTEXTS.values():
        if context.session is not None:
            context.session.close()
    CONTEXTS.clear()


def drop_context(context):
    if context.session is not None:
        context.session.close()
    context.clear()
    CONTEXTS.pop(context.token, None)


def prune_contexts():
    """Forget login contexts older than the session cookie"""
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=SESSION_MAX_AGE)
    for context in [c for c in CONTEXTS.values() if c.created_at < cutoff]:
        drop_context(context)


def get_context(request: Request):
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        return None
    prune_contexts()
    return CONTEXTS.get(token)


def get_session(context):
    """Test session for a login context, created on first use"""
    if context.session is None:
        context.session = TestSession(
            context,
            config=app.state.exam_config,
            notifier=app.state.notifier,
            result_sink=app.state.result_sink,
        )
    return context.session


def unauthorized():
    return JSONResponse({"error": "Login required"}, status_code=401)


# ===== LOGIN =====

@app.post("/login")
async def login(username: str = Form(...)):
    """Single test-taker login gate"""
    student = username.strip()
    if student != EXAM_CONFIG['student_name']:
        logger.warning("Rejected login attempt")
        return JSONResponse({"error": "username_incorrect"}, status_code=401)

    prune_contexts()
    context = SessionContext(student)
    CONTEXTS[context.token] = context

    response = JSONResponse({"success": True, "next": "/test/state"})
    response.set_cookie(key=SESSION_COOKIE, value=context.token, max_age=SESSION_MAX_AGE)
    return response


@app.post("/logout")
async def logout(request: Request):
    context = get_context(request)
    if context is not None:
        drop_context(context)

    response = JSONResponse({"success": True})
    response.delete_cookie(SESSION_COOKIE)
    return response


# ===== TEST ROUTES =====

@app.get("/test/state")
async def test_state(request: Request):
    """Current section, part and timer; a preview before the test starts"""
    context = get_context(request)
    if context is None:
        return unauthorized()
    if context.session is None and not context.authenticated:
        return unauthorized()
    return get_session(context).snapshot()


@app.post("/test/start")
async def start_test(request: Request):
    context = get_context(request)
    if context is None or not context.authenticated:
        return unauthorized()

    session = get_session(context)
    try:
        started = session.start()
    except SessionStateError as e:
        return JSONResponse({"error": str(e)}, status_code=409)

    return {"success": True, "started": started, **session.snapshot()}


@app.post("/test/answer")
async def submit_answer(request: Request):
    """Record one answer: {"section": ..., "index": ..., "value": ...}"""
    context = get_context(request)
    if context is None or context.session is None:
        return unauthorized()

    try:
        data = await request.json()
        context.session.set_answer(data["section"], int(data["index"]), data.get("value", ""))
    except (KeyError, TypeError, ValueError, IndexError) as e:
        return JSONResponse({"error": f"Invalid answer: {e}"}, status_code=400)
    except SessionStateError as e:
        return JSONResponse({"error": str(e)}, status_code=409)

    return {"success": True}


@app.post("/test/next")
async def next_step(request: Request):
    """Move to the next part or section: {"section": ..., "part": ...}"""
    context = get_context(request)
    if context is None or context.session is None:
        return unauthorized()

    try:
        body = await request.body()
        data = await request.json() if body else {}
        moved = context.session.advance(data.get("section"), data.get("part"))
    except (TypeError, ValueError, AttributeError) as e:
        return JSONResponse({"error": f"Invalid request: {e}"}, status_code=400)

    return {"success": True, "moved": moved, **context.session.snapshot()}


# ===== RESULTS =====

@app.get("/results/history")
async def results_history(request: Request):
    """Stored results for the logged-in student"""
    context = get_context(request)
    if context is None or not context.authenticated:
        return unauthorized()

    try:
        from database import get_results
        results = get_results(student=context.student)
    except Exception as e:
        logger.error("Results history error: %s", e)
        results = []

    return {"results": results}


@app.get("/variants")
async def variants():
    return {
        "active": app.state.exam_config.get('variant', EXAM_CONFIG['variant']),
        "variants": {name: variant["title"] for name, variant in TEST_VARIANTS.items()}
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "IELTS Mock Test"}


if __name__ == "__main__":
    uvicorn.run("app:app", host="0.0.0.0", port=8000, reload=True)
