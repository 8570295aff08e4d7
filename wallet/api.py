import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .errors import InvalidReportError, StorageError, VerificationError
from .models import (
    SubmitProgressRequest, SubmitProgressResponse, FinishRequest,
    WalletRecord, WalletDetailsResponse, LeaderboardResponse,
)
from .service import WalletService

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


def get_service(request: Request) -> WalletService:
    return request.app.state.service


def _storage_failure(e: StorageError) -> HTTPException:
    logger.error("Storage failure: %s", e)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


def create_app(settings: Optional[Settings] = None, service: Optional[WalletService] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    service = service or WalletService.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.service.close()

    app = FastAPI(
        title="Wallet Progress API",
        description="Wallet progress tracking with referral bonuses and a win leaderboard",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "wallet-progress"}

    @app.post("/api/wallet", response_model=SubmitProgressResponse, tags=["Wallets"])
    def submit_progress(
        request: SubmitProgressRequest, wallets: WalletService = Depends(get_service)
    ) -> SubmitProgressResponse:
        try:
            return wallets.submit_progress(request.token)
        except VerificationError as e:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
        except InvalidReportError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except StorageError as e:
            raise _storage_failure(e)

    @app.post("/api/finish", response_model=WalletRecord, tags=["Wallets"])
    def submit_finish(request: FinishRequest, wallets: WalletService = Depends(get_service)) -> WalletRecord:
        try:
            return wallets.record_win(request.address, request.win_delta)
        except InvalidReportError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except StorageError as e:
            raise _storage_failure(e)

    @app.get("/api/wallet/{address}", response_model=WalletDetailsResponse, tags=["Wallets"])
    def get_wallet_details(address: str, wallets: WalletService = Depends(get_service)) -> WalletDetailsResponse:
        try:
            return wallets.details_for(address)
        except InvalidReportError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except StorageError as e:
            raise _storage_failure(e)

    @app.get("/api/leaderboard", response_model=LeaderboardResponse, tags=["Leaderboard"])
    def get_leaderboard(
        limit: int = Query(default=settings.leaderboard_size, ge=1, le=settings.max_leaderboard_size),
        wallets: WalletService = Depends(get_service),
    ) -> LeaderboardResponse:
        try:
            return wallets.top_by_wins(limit)
        except StorageError as e:
            raise _storage_failure(e)

    return app


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
