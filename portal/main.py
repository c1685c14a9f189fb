from __future__ import annotations

import logging
import os
import re
import secrets
import threading
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.middleware.base import BaseHTTPMiddleware

from portal.aggregation import compute_org_stats, compute_team_stats
from portal.auth_client import AuthClient, AuthError, RequestInFlight, SubmissionGuard
from portal.catalog import ORG_ROSTER, SCENARIOS, Roster, get_scenario
from portal.config import Settings, configure_logging, load_settings
from portal.gate import UNAUTHENTICATED, UNAUTHORIZED, AccessGate, GateRedirect
from portal.ledger import ProgressLedger
from portal.prefs import A11Y_KEY, AccessibilityPrefs, NotesBook, PreferenceStore
from portal.scenario_choice import ChoiceControl, NoChoiceSelected
from portal.session import SESSION_KEY, Account, SessionManager
from portal.store import KeyValueStore, SqliteStore

logger = logging.getLogger(__name__)

TEMPLATES_DIR = os.path.join(os.path.dirname(__file__), "templates")
templates = Jinja2Templates(directory=TEMPLATES_DIR)

# Identifies one browser; the session and accessibility keys are scoped by it.
SESSION_COOKIE = "tp_browser"
SESSION_COOKIE_MAX_AGE = 365 * 24 * 3600
_BROWSER_ID = re.compile(r"^[A-Za-z0-9_-]{32,64}$")

LEARNER_ROLES = ("employee", "individual")
ALL_ROLES = ("employee", "manager", "hr", "individual")

DASHBOARDS = {
    "employee": "/dashboard/employee",
    "individual": "/dashboard/individual",
    "manager": "/dashboard/manager",
    "hr": "/dashboard/hr",
}

REASON_MESSAGES = {
    UNAUTHENTICATED: "Please sign in to continue.",
    UNAUTHORIZED: "Your account does not have access to that page.",
}


def new_browser_id() -> str:
    return secrets.token_urlsafe(32)


@dataclass
class Portal:
    """Shared services, built once per app.

    Session, accessibility prefs and the auth submission guard belong to
    one browser and are handed out per request by the `*_for` methods.
    """

    settings: Settings
    store: KeyValueStore
    ledger: ProgressLedger
    auth: AuthClient
    notes: NotesBook
    roster: Roster
    _guards: weakref.WeakValueDictionary = field(default_factory=weakref.WeakValueDictionary, init=False, repr=False)
    _guards_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def sessions_for(self, browser_id: str) -> SessionManager:
        return SessionManager(self.store, key=f"{SESSION_KEY}:{browser_id}")

    def prefs_for(self, browser_id: str) -> PreferenceStore:
        return PreferenceStore(self.store, key=f"{A11Y_KEY}:{browser_id}")

    def gate_for(self, browser_id: str) -> AccessGate:
        return AccessGate(
            self.sessions_for(browser_id),
            self.ledger,
            login_url=self.settings.login_url,
            roster=self.roster,
        )

    def auth_for(self, browser_id: str) -> AuthClient:
        # The guard lives as long as some request from this browser holds it.
        with self._guards_lock:
            guard = self._guards.get(browser_id)
            if guard is None:
                guard = SubmissionGuard()
                self._guards[browser_id] = guard
        return self.auth.with_guard(guard)


def build_portal(
    settings: Settings,
    *,
    store: KeyValueStore | None = None,
    auth: AuthClient | None = None,
    roster: Roster = ORG_ROSTER,
) -> Portal:
    store = store or SqliteStore(settings.store_path)
    return Portal(
        settings=settings,
        store=store,
        ledger=ProgressLedger(store, SCENARIOS),
        auth=auth or AuthClient(settings.auth_base_url),
        notes=NotesBook(store),
        roster=roster,
    )


class BrowserCookieMiddleware(BaseHTTPMiddleware):
    """Attach `request.state.browser_id`, minting and setting the cookie when absent."""

    async def dispatch(self, request: Request, call_next):
        browser_id = (request.cookies.get(SESSION_COOKIE) or "").strip()
        minted = not _BROWSER_ID.match(browser_id)
        if minted:
            browser_id = new_browser_id()
        request.state.browser_id = browser_id

        response = await call_next(request)
        if minted:
            response.set_cookie(
                SESSION_COOKIE,
                browser_id,
                max_age=SESSION_COOKIE_MAX_AGE,
                httponly=True,
                samesite="lax",
            )
        return response


def _portal(request: Request) -> Portal:
    return request.app.state.portal


def _browser_id(request: Request) -> str:
    return request.state.browser_id


def _sessions(request: Request) -> SessionManager:
    return _portal(request).sessions_for(_browser_id(request))


def require_role(*roles: str):
    """Route dependency wrapping the access gate."""

    def dependency(request: Request) -> Account:
        return _portal(request).gate_for(_browser_id(request)).require_role(roles)

    return dependency


def _render(request: Request, template: str, ctx: dict | None = None, status_code: int = 200):
    p = _portal(request)
    browser_id = _browser_id(request)
    base = {"account": p.sessions_for(browser_id).get_session(), "a11y": p.prefs_for(browser_id).load()}
    base.update(ctx or {})
    return templates.TemplateResponse(request, template, base, status_code=status_code)


def _auth_status(e: AuthError) -> int:
    if isinstance(e, RequestInFlight):
        return 409
    if e.status and e.status >= 400:
        return e.status
    return 400


def _scenario_or_404(scenario_id: str):
    scenario = get_scenario(scenario_id)
    if scenario is None:
        raise HTTPException(status_code=404, detail="Unknown scenario")
    return scenario


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    app.state.portal.auth.close()
    logger.info("Closed auth client")


def create_app(settings: Settings | None = None, *, portal: Portal | None = None) -> FastAPI:
    settings = settings or (portal.settings if portal else load_settings())
    app = FastAPI(title="DEI Training Portal", lifespan=lifespan)
    app.state.portal = portal or build_portal(settings)
    app.add_middleware(BrowserCookieMiddleware)

    @app.exception_handler(GateRedirect)
    async def _gate_redirect_handler(request: Request, exc: GateRedirect):
        return RedirectResponse(url=exc.location, status_code=303)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": f"Unhandled error: {type(exc).__name__}: {exc}"},
        )

    # --- Onboarding + auth ---

    @app.get("/")
    def root(request: Request):
        # Landing always starts clean.
        _sessions(request).clear_session()
        return RedirectResponse(url="/onboarding", status_code=303)

    @app.get("/onboarding", response_class=HTMLResponse)
    def onboarding(request: Request):
        _sessions(request).clear_session()
        return _render(request, "onboarding.html", {"roles": ALL_ROLES})

    @app.get("/login", response_class=HTMLResponse)
    def login_form(request: Request, reason: str = ""):
        return _render(request, "login.html", {"notice": REASON_MESSAGES.get(reason), "roles": ALL_ROLES})

    @app.post("/login")
    def login_run(request: Request, email: str = Form(""), password: str = Form(""), role: str = Form("")):
        auth = _portal(request).auth_for(_browser_id(request))
        try:
            account = auth.login(email, password, role or None)
        except AuthError as e:
            return _render(request, "login.html", {"error": e.message, "roles": ALL_ROLES}, status_code=_auth_status(e))

        _sessions(request).set_session(account)
        logger.info("Signed in %s as %s", account.email, account.role)
        return RedirectResponse(url=DASHBOARDS[account.role], status_code=303)

    @app.post("/register")
    def register_run(
        request: Request,
        full_name: str = Form(""),
        email: str = Form(""),
        password: str = Form(""),
        role: str = Form("individual"),
    ):
        auth = _portal(request).auth_for(_browser_id(request))
        try:
            account = auth.register_and_login(email, password, full_name.strip() or None, role or "individual")
        except AuthError as e:
            return _render(request, "onboarding.html", {"error": e.message, "roles": ALL_ROLES}, status_code=_auth_status(e))

        _sessions(request).set_session(account)
        return RedirectResponse(url=DASHBOARDS[account.role], status_code=303)

    @app.post("/logout")
    def logout(request: Request):
        _sessions(request).clear_session()
        return RedirectResponse(url="/onboarding", status_code=303)

    # --- Dashboards ---

    @app.get("/dashboard")
    def dashboard(account: Account = Depends(require_role(*ALL_ROLES))):
        return RedirectResponse(url=DASHBOARDS[account.role], status_code=303)

    def _learner_dashboard(request: Request, account: Account):
        progress = _portal(request).ledger.get_progress(account.email)
        rows = [(s, progress.scenarios.get(s.id)) for s in SCENARIOS]
        done = sum(1 for _, e in rows if e and e.status == "complete")
        return _render(request, "dashboard_learner.html", {"rows": rows, "done": done, "total": len(rows)})

    @app.get("/dashboard/employee", response_class=HTMLResponse)
    def dashboard_employee(request: Request, account: Account = Depends(require_role("employee"))):
        return _learner_dashboard(request, account)

    @app.get("/dashboard/individual", response_class=HTMLResponse)
    def dashboard_individual(request: Request, account: Account = Depends(require_role("individual"))):
        return _learner_dashboard(request, account)

    def _team_rows(p: Portal, account: Account):
        member = p.roster.find_by_email(account.email)
        if member is None:
            logger.info("Manager %s is not on the roster; showing an empty team", account.email)
            return []
        return compute_team_stats(p.ledger, member.id, p.roster, SCENARIOS)

    @app.get("/dashboard/manager", response_class=HTMLResponse)
    def dashboard_manager(request: Request, account: Account = Depends(require_role("manager"))):
        return _render(request, "dashboard_manager.html", {"team": _team_rows(_portal(request), account)})

    @app.get("/dashboard/hr", response_class=HTMLResponse)
    def dashboard_hr(request: Request, account: Account = Depends(require_role("hr"))):
        p = _portal(request)
        stats = compute_org_stats(p.ledger, p.roster, SCENARIOS)
        return _render(request, "dashboard_hr.html", {"stats": stats, "scenarios": SCENARIOS})

    # --- Scenarios ---

    @app.get("/scenarios/{scenario_id}", response_class=HTMLResponse)
    def scenario_page(request: Request, scenario_id: str, account: Account = Depends(require_role(*LEARNER_ROLES))):
        p = _portal(request)
        scenario = _scenario_or_404(scenario_id)
        entry = p.ledger.mark_in_progress(account.email, scenario.id)
        control = ChoiceControl.enter(p.ledger, account.email, scenario)
        return _render(request, "scenario.html", {"scenario": scenario, "control": control, "entry": entry})

    @app.post("/scenarios/{scenario_id}/choice")
    def scenario_choice(
        request: Request,
        scenario_id: str,
        choice: str = Form(""),
        account: Account = Depends(require_role(*LEARNER_ROLES)),
    ):
        p = _portal(request)
        scenario = _scenario_or_404(scenario_id)
        control = ChoiceControl.enter(p.ledger, account.email, scenario)
        try:
            control.select(choice)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return RedirectResponse(url=f"/scenarios/{scenario.id}", status_code=303)

    @app.post("/scenarios/{scenario_id}/confirm")
    def scenario_confirm(request: Request, scenario_id: str, account: Account = Depends(require_role(*LEARNER_ROLES))):
        p = _portal(request)
        scenario = _scenario_or_404(scenario_id)
        control = ChoiceControl.enter(p.ledger, account.email, scenario)
        try:
            control.confirm()
        except NoChoiceSelected as e:
            raise HTTPException(status_code=409, detail=str(e))
        return RedirectResponse(url=DASHBOARDS[account.role], status_code=303)

    # --- Notes + preferences ---

    @app.get("/notes", response_class=HTMLResponse)
    def notes_page(request: Request, account: Account = Depends(require_role(*LEARNER_ROLES))):
        return _render(request, "notes.html", {"text": _portal(request).notes.get(account.email)})

    @app.post("/notes")
    def notes_save(request: Request, text: str = Form(""), account: Account = Depends(require_role(*LEARNER_ROLES))):
        _portal(request).notes.save(account.email, text)
        return RedirectResponse(url="/notes", status_code=303)

    @app.get("/preferences", response_class=HTMLResponse)
    def preferences_page(request: Request, account: Account = Depends(require_role(*ALL_ROLES))):
        return _render(request, "preferences.html", {})

    @app.post("/preferences")
    def preferences_save(
        request: Request,
        high_contrast: bool = Form(False),
        large_text: bool = Form(False),
        reduced_motion: bool = Form(False),
        dyslexia_font: bool = Form(False),
        account: Account = Depends(require_role(*ALL_ROLES)),
    ):
        _portal(request).prefs_for(_browser_id(request)).save(
            AccessibilityPrefs(
                high_contrast=high_contrast,
                large_text=large_text,
                reduced_motion=reduced_motion,
                dyslexia_font=dyslexia_font,
            )
        )
        return RedirectResponse(url="/preferences", status_code=303)

    # --- JSON ---

    @app.get("/api/progress")
    def api_progress(request: Request, account: Account = Depends(require_role(*LEARNER_ROLES))):
        return _portal(request).ledger.get_progress(account.email).to_dict()

    @app.get("/api/org-stats")
    def api_org_stats(request: Request, account: Account = Depends(require_role("hr"))):
        p = _portal(request)
        return compute_org_stats(p.ledger, p.roster, SCENARIOS).to_dict()

    @app.get("/api/team-stats")
    def api_team_stats(request: Request, account: Account = Depends(require_role("manager"))):
        return [row.to_dict() for row in _team_rows(_portal(request), account)]

    return app


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    s = load_settings()
    configure_logging(s.log_level)
    uvicorn.run(create_app(s), host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
