"""HTTP host for the login flow.

Serves the login entry point and listens at the redirect URI path. The
callback view stays on the request until the flow reaches a terminal state,
then redirects on success, renders a degraded notice when the profile could
not be loaded, or renders the error with a deferred redirect back to login.
"""

import asyncio
import html
import logging
from urllib.parse import urlencode, urlparse

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from oauthflow.client.models.config import OAuthClientConfig
from oauthflow.client.models.errors import ConfigurationError, OAuthError
from oauthflow.client.models.flow import CallbackResult
from oauthflow.client.oauth_client import OAuthLoginClient
from oauthflow.client.services.callback import CallbackHandler
from oauthflow.client.services.session import SessionTokenStore
from oauthflow.client.services.storage import JSONFileStorage

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"

PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8">{head}<title>{title}</title></head>
<body><h1>{title}</h1><p>{message}</p>{footer}</body>
</html>
"""


def render_page(title: str, message: str, head: str = "", footer: str = "") -> str:
    return PAGE_TEMPLATE.format(
        title=html.escape(title),
        message=html.escape(message),
        head=head,
        footer=footer,
    )


class LoginServer:
    """Starlette application hosting the login and callback routes."""

    def __init__(
        self,
        client: OAuthLoginClient,
        post_login_path: str = "/dashboard",
        failure_redirect_delay: int = 5,
        host: str = "127.0.0.1",
        port: int = 5173,
    ) -> None:
        self.client = client
        self.post_login_path = post_login_path
        self.failure_redirect_delay = failure_redirect_delay
        self.host = host
        self.port = port
        self.callback_path = client.config.redirect_path

        # Handler for the most recent redirect, keyed by its query string
        self._active: tuple[str, CallbackHandler] | None = None

        self._app = Starlette(
            routes=[
                Route(LOGIN_PATH, self._handle_login, methods=["GET"]),
                Route(self.callback_path, self._handle_callback, methods=["GET"]),
                Route("/logout", self._handle_logout, methods=["GET"]),
                Route("/me", self._handle_me, methods=["GET"]),
            ]
        )
        self._server = None

    @property
    def app(self) -> Starlette:
        return self._app

    async def serve(self, log_level: str = "info") -> None:
        """Run the HTTP server until it is stopped."""
        config = uvicorn.Config(
            app=self._app, host=self.host, port=self.port, log_level=log_level
        )
        self._server = uvicorn.Server(config)
        logger.info(
            f"Login server listening on {self.host}:{self.port}, "
            f"callback at {self.callback_path}"
        )
        try:
            await self._server.serve()
        finally:
            await self.client.close()

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._server:
            self._server.should_exit = True

    async def _handle_login(self, request: Request) -> Response:
        try:
            auth_url = await self.client.login()
        except ConfigurationError as e:
            logger.error(f"Cannot start login: {e}")
            return HTMLResponse(
                render_page("Login unavailable", str(e)), status_code=500
            )
        except OAuthError as e:
            logger.error(f"Cannot start login: {e}")
            return HTMLResponse(render_page("Login failed", str(e)), status_code=500)

        return RedirectResponse(auth_url, status_code=302)

    async def _handle_callback(self, request: Request) -> Response:
        params = dict(request.query_params)
        key = urlencode(sorted(params.items()))

        if self._active is not None and self._active[0] == key:
            # Same redirect delivered again; reuse the original outcome
            handler = self._active[1]
            logger.debug("Repeated callback request; awaiting original result")
        else:
            handler = self.client.new_callback_handler()
            self._active = (key, handler)

        if not handler.started:
            await handler.handle(params)
        result = await handler.wait()
        return self._render_result(result)

    def _render_result(self, result: CallbackResult) -> Response:
        if result.failed:
            delay = self.failure_redirect_delay
            refresh = f'<meta http-equiv="refresh" content="{delay};url={LOGIN_PATH}">'
            return HTMLResponse(
                render_page(
                    "Login Failed",
                    result.reason or "Login failed",
                    head=refresh,
                    footer=f"<p>Redirecting to login page in {delay} seconds...</p>",
                ),
                status_code=400,
            )

        if result.degraded:
            return HTMLResponse(
                render_page(
                    "Logged in",
                    "Login successful, but failed to load user details. "
                    "Please refresh.",
                    footer=f'<p><a href="{html.escape(self.post_login_path)}">'
                    "Continue</a></p>",
                ),
                status_code=200,
            )

        return RedirectResponse(self.post_login_path, status_code=303)

    async def _handle_logout(self, request: Request) -> Response:
        await self.client.logout()
        return RedirectResponse(LOGIN_PATH, status_code=303)

    async def _handle_me(self, request: Request) -> Response:
        authenticated = await self.client.is_authenticated()
        user = await self.client.current_user() if authenticated else None
        return JSONResponse(
            {
                "authenticated": authenticated,
                "user": user.model_dump() if user else None,
            }
        )


async def main() -> None:
    logging.basicConfig(level=logging.INFO)

    config = OAuthClientConfig.from_env()
    session_store = SessionTokenStore(JSONFileStorage())
    client = OAuthLoginClient(config, session_store=session_store)

    redirect = urlparse(config.redirect_uri or "")
    server = LoginServer(
        client, host=redirect.hostname or "127.0.0.1", port=redirect.port or 5173
    )
    await server.serve()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
