import logging
from urllib.parse import quote

import pydantic
from fastapi import Body, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse

import data_access
from auth_service import AuthService
from config import APP_VERSION, configure_logging, load_settings
from errors import AuthError, RemoteError, ValidationError
from models import ProfileUpdate
from settings_schema import SettingsSchema
from store import RemoteStore

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

_AUTH_STATUS = {
    "user_exists": 400,
    "email_not_confirmed": 400,
    "invalid_code": 400,
    "provider": 500,
}


class FitnessAPI:
    """JSON endpoints backing the fitness tracker UI."""

    def __init__(
        self,
        db_path: str = "workout.db",
        yaml_path: str = "settings.yaml",
        settings: SettingsSchema | None = None,
    ) -> None:
        self.db_path = db_path
        self.settings = settings or load_settings(yaml_path)
        self.store = RemoteStore(db_path)
        self.auth = AuthService(db_path, self.settings)
        self.app = FastAPI(title="donotdie API", version=APP_VERSION)
        self._setup_error_handlers()
        self._setup_routes()

    def _setup_error_handlers(self) -> None:
        @self.app.exception_handler(AuthError)
        async def auth_error(request: Request, exc: AuthError):
            return JSONResponse(
                {"error": exc.message, "code": exc.kind},
                status_code=_AUTH_STATUS.get(exc.kind, 401),
            )

        @self.app.exception_handler(ValidationError)
        async def validation_error(request: Request, exc: ValidationError):
            return JSONResponse({"error": str(exc)}, status_code=400)

        @self.app.exception_handler(RemoteError)
        async def remote_error(request: Request, exc: RemoteError):
            return JSONResponse({"error": exc.message}, status_code=exc.status)

        @self.app.exception_handler(RequestValidationError)
        async def request_error(request: Request, exc: RequestValidationError):
            logger.warning("invalid request to %s: %s", request.url.path, exc.errors())
            return JSONResponse({"error": "Invalid request body"}, status_code=400)

    async def current_user(self, request: Request) -> dict:
        """Resolve the caller from a bearer token or the access cookie."""
        token = None
        header = request.headers.get("Authorization", "")
        if header.lower().startswith("bearer "):
            token = header[7:].strip()
        token = token or request.cookies.get(ACCESS_COOKIE)
        if not token:
            raise AuthError("Auth session missing", "invalid_token")
        return await self.auth.get_session(token)

    def _set_session_cookies(self, response: Response, session: dict) -> None:
        response.set_cookie(
            ACCESS_COOKIE,
            session["access_token"],
            max_age=session["expires_in"],
            httponly=True,
            samesite="lax",
        )
        response.set_cookie(
            REFRESH_COOKIE,
            session["refresh_token"],
            max_age=self.settings.refresh_token_days * 86400,
            httponly=True,
            samesite="lax",
        )

    def _setup_routes(self) -> None:
        @self.app.get("/health", summary="Health check")
        async def health():
            await self.store.list_equipment()
            return {"status": "ok", "version": APP_VERSION}

        @self.app.get("/session")
        async def session(request: Request):
            try:
                user = await self.current_user(request)
            except AuthError:
                return JSONResponse({"user": None}, status_code=401)
            try:
                profile = await self.store.get_profile(user["id"])
            except RemoteError as e:
                if e.status != 404:
                    raise
                logger.info("creating default profile for %s", user["id"])
                profile = await self.store.create_profile(user["id"])
            return {"user": {**profile, "id": user["id"], "email": user["email"]}}

        @self.app.get("/profile")
        async def get_profile(request: Request):
            try:
                user = await self.current_user(request)
            except AuthError:
                return JSONResponse({"profile": None}, status_code=401)
            try:
                profile = await data_access.fetch_profile(self.store, user["id"])
            except RemoteError as e:
                if e.status != 404:
                    raise
                return JSONResponse({"profile": None}, status_code=404)
            return {"profile": profile}

        @self.app.patch("/profile")
        async def update_profile(request: Request, payload: dict = Body(...)):
            user = await self.current_user(request)
            try:
                updates = ProfileUpdate.model_validate(payload).model_dump(exclude_unset=True)
            except pydantic.ValidationError as e:
                raise ValidationError(
                    "; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors())
                ) from e
            profile = await data_access.update_profile(self.store, user["id"], updates)
            return {"profile": profile}

        @self.app.post("/auth/signup", status_code=201)
        async def sign_up(response: Response, payload: dict = Body(...)):
            result = await self.auth.sign_up(
                payload.get("email", ""),
                payload.get("password", ""),
                name=payload.get("name"),
                unit_preference=payload.get("unitPreference") or payload.get("unit_preference"),
            )
            if result["session"] is not None:
                self._set_session_cookies(response, result["session"])
            return result

        @self.app.post("/auth/signin")
        async def sign_in(response: Response, payload: dict = Body(...)):
            session = await self.auth.sign_in(
                payload.get("email", ""), payload.get("password", "")
            )
            self._set_session_cookies(response, session)
            return {"session": session}

        @self.app.post("/auth/signout")
        async def sign_out(request: Request, response: Response):
            await self.auth.sign_out(refresh_token=request.cookies.get(REFRESH_COOKIE))
            response.delete_cookie(ACCESS_COOKIE)
            response.delete_cookie(REFRESH_COOKIE)
            return {"message": "Signed out"}

        @self.app.post("/auth/magiclink")
        async def magic_link(payload: dict = Body(...)):
            email = payload.get("email")
            if not email:
                return JSONResponse({"error": "Email is required"}, status_code=400)
            await self.auth.send_magic_link(email, payload.get("redirect_to"))
            return {"message": "Magic link sent successfully"}

        @self.app.post("/auth/resend")
        async def resend(payload: dict = Body(...)):
            email = payload.get("email")
            if not email:
                return JSONResponse({"error": "Email is required"}, status_code=400)
            await self.auth.resend_confirmation(email)
            return {"message": "Confirmation email sent"}

        @self.app.post("/auth/refresh")
        async def refresh(request: Request, response: Response, payload: dict | None = Body(None)):
            token = (payload or {}).get("refresh_token") or request.cookies.get(REFRESH_COOKIE)
            if not token:
                return JSONResponse({"error": "No active session"}, status_code=401)
            session = await self.auth.refresh_session(token)
            self._set_session_cookies(response, session)
            return {"session": session}

        @self.app.get("/auth/callback")
        async def callback(code: str | None = None, next: str = "/home"):
            if not code:
                return RedirectResponse(
                    "/auth/login?error=" + quote("No authorization code provided")
                )
            try:
                session = await self.auth.exchange_code_for_session(code)
            except AuthError as e:
                logger.warning("code exchange failed: %s", e.message)
                return RedirectResponse("/auth/login?error=" + quote(e.message))
            target = session.get("redirect_to") or next
            if not target.startswith("/") or target.startswith("//"):
                target = "/home"
            response = RedirectResponse(target)
            self._set_session_cookies(response, session)
            return response

        @self.app.get("/auth/google")
        async def google():
            try:
                url = self.auth.oauth_authorize_url(
                    "google", f"{self.settings.site_url}/auth/callback"
                )
            except AuthError as e:
                return JSONResponse({"error": e.message}, status_code=500)
            return RedirectResponse(url)

        @self.app.get("/equipment")
        async def equipment():
            rows = await data_access.fetch_equipment(self.store)
            return JSONResponse(rows, headers={"Cache-Control": "public, s-maxage=86400"})

        @self.app.get("/exercises")
        async def exercises():
            rows = await data_access.fetch_available_exercises(self.store)
            return JSONResponse(
                rows,
                headers={"Cache-Control": "public, s-maxage=86400, stale-while-revalidate=59"},
            )


api = FitnessAPI()
app = api.app

if __name__ == "__main__":
    import uvicorn

    configure_logging(api.settings.log_level)
    uvicorn.run(app)
