import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Union

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field

from pyxis_library.config import settings
from pyxis_library.database import RecordStore
from pyxis_library.library import Library

logger = logging.getLogger(__name__)

IdValue = Union[int, str, None]


# --- Request models ---
class SignupModel(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    nickname: Optional[str] = None


class LoginModel(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class ReserveModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: IdValue = Field(None, alias="userId")
    book_id: IdValue = Field(None, alias="bookId")


class ReservationActionModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reservation_id: IdValue = Field(None, alias="reservationId")
    user_id: IdValue = Field(None, alias="userId")


def get_library(request: Request) -> Library:
    return request.app.state.library


def create_app(store: Optional[RecordStore] = None) -> FastAPI:
    """Build the API. The store is opened on startup and closed on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        record_store = store or RecordStore(settings.data_file)
        record_store.open()
        app.state.library = Library(record_store)
        try:
            yield
        finally:
            record_store.close()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Health check ---
    @app.get("/health")
    def health(library: Library = Depends(get_library)):
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "total_books": library.store.count_records(),
        }

    # --- Catalog ---
    @app.get("/api/render")
    def render_books(library: Library = Depends(get_library)):
        result = library.render_all()
        return {"count": result.data["count"], "books": result.data["books"]}

    @app.get("/search")
    def search_books(q: Optional[str] = Query(None), library: Library = Depends(get_library)):
        result = library.search(q)
        if not result.success:
            return {"message": result.message}
        return {"count": result.data["count"], "books": result.data["books"]}

    @app.get("/api/available")
    def available_books(library: Library = Depends(get_library)):
        result = library.list_available()
        return {"count": result.data["count"], "books": result.data["books"]}

    @app.get("/book/{book_id}")
    def get_book(book_id: str, library: Library = Depends(get_library)):
        result = library.get_book(book_id)
        if not result.success:
            return JSONResponse(status_code=404, content={"message": result.message})
        return result.data["book"]

    # --- Accounts ---
    @app.post("/api/signup")
    def signup(payload: SignupModel, library: Library = Depends(get_library)):
        return library.signup(payload.username, payload.password, payload.nickname).to_dict()

    @app.post("/api/login")
    def login(payload: LoginModel, library: Library = Depends(get_library)):
        return library.login(payload.username, payload.password).to_dict()

    # --- Reservations ---
    @app.post("/api/reserve")
    def reserve(payload: ReserveModel, library: Library = Depends(get_library)):
        return library.reserve(payload.user_id, payload.book_id).to_dict()

    @app.post("/api/extend")
    def extend(payload: ReservationActionModel, library: Library = Depends(get_library)):
        return library.extend(payload.reservation_id, payload.user_id).to_dict()

    @app.post("/api/cancel")
    def cancel(payload: ReservationActionModel, library: Library = Depends(get_library)):
        return library.cancel(payload.reservation_id, payload.user_id).to_dict()

    @app.get("/api/user/{user_id}/reservations")
    def user_reservations(user_id: str, library: Library = Depends(get_library)):
        return library.list_reservations(user_id).to_dict()

    # Static front-end last so API routes take precedence
    if os.path.isdir(settings.static_dir):
        app.mount("/", StaticFiles(directory=settings.static_dir, html=True), name="static")
    else:
        logger.debug(f"Static directory not found, front-end not mounted: {settings.static_dir}")

    return app


app = create_app()
