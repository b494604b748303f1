"""FastAPI adapter — thin translation layer, no business logic."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from chain_agent import Services, __version__, create_services
from chain_agent.auth.models import AuthError, InvalidToken, WalletClaims
from chain_agent.engine.models import Chain
from chain_agent.errors import ModelError, SessionNotFound, StoreError, UnsupportedChain

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class CreateSessionRequest(BaseModel):
    wallet_address: str | None = None
    chain: str | None = None


class ChatRequest(BaseModel):
    session_id: str = Field(min_length=1)
    message: str = Field(min_length=1)
    wallet_address: str | None = None


class VerifyRequest(BaseModel):
    address: str
    signature: str
    message: str
    chain: str
    session_id: str | None = None


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_services(request: Request) -> Services:
    return request.app.state.services


async def optional_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    services: Services = Depends(get_services),
) -> WalletClaims | None:
    """Claims of the presented bearer token; a presented but invalid token is a 401."""
    if credentials is None:
        return None
    return services.auth.validate_token(credentials.credentials)


async def require_claims(claims: WalletClaims | None = Depends(optional_claims)) -> WalletClaims:
    if claims is None:
        raise InvalidToken("Authentication required")
    return claims


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

def create_app(services: Services | None = None) -> FastAPI:
    services = services or create_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await services.start()
        yield
        await services.aclose()

    app = FastAPI(title="Chain Agent API", version=__version__, lifespan=lifespan)
    app.state.services = services

    # -- error mapping ------------------------------------------------------

    @app.exception_handler(AuthError)
    async def _auth_error(request: Request, exc: AuthError) -> JSONResponse:
        return JSONResponse(
            {"error": str(exc)},
            status_code=status.HTTP_401_UNAUTHORIZED,
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(UnsupportedChain)
    async def _bad_chain(request: Request, exc: UnsupportedChain) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(SessionNotFound)
    async def _no_session(request: Request, exc: SessionNotFound) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=status.HTTP_404_NOT_FOUND)

    @app.exception_handler(ModelError)
    async def _model_error(request: Request, exc: ModelError) -> JSONResponse:
        logger.error("Model error: %s", exc)
        return JSONResponse({"error": str(exc)}, status_code=status.HTTP_502_BAD_GATEWAY)

    @app.exception_handler(StoreError)
    async def _store_error(request: Request, exc: StoreError) -> JSONResponse:
        logger.error("Store error: %s", exc)
        return JSONResponse({"error": str(exc)}, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

    @app.exception_handler(Exception)
    async def _internal_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse({"error": "internal error"}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    # -- sessions -----------------------------------------------------------

    @app.post("/session")
    async def create_session(body: CreateSessionRequest, svc: Services = Depends(get_services)) -> dict:
        chain = Chain.parse(body.chain) if body.chain else None
        address = svc.auth.normalize_address(body.wallet_address) if body.wallet_address else None
        session = await svc.sessions.create(wallet_address=address, chain=chain)
        return {"session_id": session.session_id, "created_at": session.created_at}

    @app.get("/session/{session_id}")
    async def get_session(session_id: str, svc: Services = Depends(get_services)) -> dict:
        session = await svc.sessions.get(session_id)
        return session.to_record()

    @app.delete("/session/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_session(session_id: str, svc: Services = Depends(get_services)) -> Response:
        await svc.sessions.delete(session_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # -- agent --------------------------------------------------------------

    @app.post("/agent/chat")
    async def chat(
        body: ChatRequest,
        claims: WalletClaims | None = Depends(optional_claims),
        svc: Services = Depends(get_services),
    ) -> dict:
        wallet = claims.sub if claims else body.wallet_address
        chain = claims.chain if claims else None
        if wallet and not claims:
            wallet = svc.auth.normalize_address(wallet)
        response = await svc.engine.handle(body.session_id, body.message, wallet_address=wallet, chain=chain)
        return response.to_payload()

    # -- wallet auth --------------------------------------------------------

    @app.get("/wallet/nonce/{address}")
    async def wallet_nonce(address: str, svc: Services = Depends(get_services)) -> dict:
        nonce = await svc.auth.request_nonce(address)
        return {"nonce": nonce.nonce, "message": nonce.message}

    @app.post("/wallet/verify")
    async def wallet_verify(body: VerifyRequest, svc: Services = Depends(get_services)) -> dict:
        token = await svc.auth.verify(
            body.address, body.signature, body.message, body.chain, session_id=body.session_id,
        )
        return {"token": token.token, "expires_at": token.expires_at, "session_id": token.session_id}

    @app.get("/wallet/me")
    async def wallet_me(claims: WalletClaims = Depends(require_claims)) -> dict:
        return {"address": claims.sub, "chain": claims.chain.value}

    # -- ops ----------------------------------------------------------------

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/status")
    async def service_status(svc: Services = Depends(get_services)) -> dict:
        return {
            "service": "chain-agent",
            "version": __version__,
            "tools": [t.name for t in svc.registry.list()],
            "registry_frozen": svc.registry.frozen,
            "max_iterations": svc.engine.max_iterations,
            "pool": svc.pool.stats(),
        }

    return app


def serve() -> None:
    """Entry-point for ``agent-web`` console script."""
    import uvicorn

    from chain_agent.config import Settings

    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "chain_agent.adapters.web_fastapi.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_level=settings.log_level.lower(),
    )
