from typing import List, Optional

from fastapi import (
    Depends,
    FastAPI,
    File,
    HTTPException,
    Query,
    Request,
    Response,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from jose import JWTError
from pydantic import BaseModel, EmailStr
from pymongo.database import Database

import database
from academics import (
    ALL_DEGREES,
    BOCCONI_DEGREES,
    build_experience_rows,
    hydrate_academics,
    validate_current_degree,
)
from auth import (
    PURPOSE_MAGIC_LINK,
    PURPOSE_RECOVERY,
    authenticate,
    build_link,
    create_access_token,
    create_link_token,
    decode_token,
    deliver_link,
    ensure_account,
    get_current_user,
    get_user_by_email,
    get_user_by_id,
    require_onboarding_pending,
    resolve_token_user,
    set_password,
    user_to_public,
    validate_new_password,
    validate_university_email,
)
from config import CORS_ORIGINS, EXPOSE_AUTH_LINKS, PORT
from database import BackendError, get_db
from logger import get_logger
from onboarding import delete_draft, load_wizard, save_wizard
from profile_service import (
    fetch_contacts,
    fetch_experiences,
    fetch_profile,
    replace_experiences,
    update_contacts,
    update_profile,
)
from schemas import (
    OnboardingAcademics,
    OnboardingContacts,
    OnboardingCourse,
    OnboardingExchange,
    Visibility,
)
from search import SearchController, SearchFilter, SearchResult, execute_search, to_card
from storage import AvatarBucket, validate_image

logger = get_logger(__name__)

# App setup
app = FastAPI(title="bcontact API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BackendError)
async def backend_error_handler(request: Request, exc: BackendError):
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})


# Helpers

def user_id_of(user: dict) -> str:
    return str(user["_id"])


def bad_request(exc: Exception) -> HTTPException:
    return HTTPException(status.HTTP_400_BAD_REQUEST, str(exc))


def link_response(link: str) -> dict:
    body = {"sent": True}
    if EXPOSE_AUTH_LINKS:
        body["link"] = link
    return body


def wizard_for(db: Database, user: dict):
    return load_wizard(db, user_id_of(user), bool(user.get("password")))


# Models for requests/responses
class EmailBody(BaseModel):
    email: EmailStr


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class LinkTokenBody(BaseModel):
    token: str


class NewPasswordBody(BaseModel):
    password: str
    confirm: str


class ResetConfirmBody(BaseModel):
    token: str
    password: str
    confirm: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class IdentityPatch(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class AcademicsPatch(BaseModel):
    current_degree: Optional[str] = None
    other_degrees: Optional[List[str]] = None
    courses: Optional[List[OnboardingCourse]] = None
    exchange: Optional[OnboardingExchange] = None


class ContactsPatch(BaseModel):
    phone: Optional[str] = None
    linkedin_url: Optional[str] = None
    instagram: Optional[str] = None
    visibility: Optional[Visibility] = None


class DegreeBody(BaseModel):
    degree: str


class ProfileIdentityBody(BaseModel):
    first_name: str
    last_name: str
    bio: Optional[str] = None


# Auth Endpoints
@app.post("/api/auth/magic-link")
def request_magic_link(body: EmailBody, db: Database = Depends(get_db)):
    try:
        email = validate_university_email(body.email)
    except ValueError as e:
        raise bad_request(e)

    user = ensure_account(db, email)
    token = create_link_token(user_id_of(user), email, PURPOSE_MAGIC_LINK)
    link = build_link("onboarding", token)
    deliver_link(email, link, PURPOSE_MAGIC_LINK)
    return link_response(link)


@app.post("/api/auth/magic-link/verify", response_model=TokenResponse)
def verify_magic_link(body: LinkTokenBody, db: Database = Depends(get_db)):
    try:
        token_data = decode_token(body.token, PURPOSE_MAGIC_LINK)
    except JWTError:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid or expired link")

    user = get_user_by_id(db, token_data.user_id)
    if user is None:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid or expired link")
    return TokenResponse(access_token=create_access_token({"sub": user_id_of(user), "email": user["email"]}))


@app.post("/api/auth/login", response_model=TokenResponse)
def login(body: LoginBody, db: Database = Depends(get_db)):
    user = authenticate(db, body.email, body.password)
    if user is None:
        raise HTTPException(status_code=400, detail="Incorrect email or password")

    token = create_access_token({"sub": user_id_of(user), "email": user["email"]})
    return TokenResponse(access_token=token)


@app.post("/api/auth/password-reset")
def request_password_reset(body: EmailBody, db: Database = Depends(get_db)):
    try:
        email = validate_university_email(body.email)
    except ValueError as e:
        raise bad_request(e)

    link = ""
    user = get_user_by_email(db, email)
    if user is not None:
        token = create_link_token(user_id_of(user), email, PURPOSE_RECOVERY)
        link = build_link("reset-password", token)
        deliver_link(email, link, PURPOSE_RECOVERY)
    else:
        logger.info(f"Password reset requested for unknown address {email}")
    return link_response(link)


@app.post("/api/auth/password-reset/confirm")
def confirm_password_reset(body: ResetConfirmBody, db: Database = Depends(get_db)):
    try:
        token_data = decode_token(body.token, PURPOSE_RECOVERY)
    except JWTError:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid or expired link")
    try:
        validate_new_password(body.password, body.confirm)
    except ValueError as e:
        raise bad_request(e)

    if get_user_by_id(db, token_data.user_id) is None:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid or expired link")
    set_password(db, token_data.user_id, body.password)
    return {"password_set": True}


@app.put("/api/auth/password")
def change_password(body: NewPasswordBody, current=Depends(get_current_user), db: Database = Depends(get_db)):
    try:
        validate_new_password(body.password, body.confirm)
    except ValueError as e:
        raise bad_request(e)
    set_password(db, user_id_of(current), body.password)
    return {"password_set": True}


@app.get("/api/auth/session")
def get_session(current=Depends(get_current_user), db: Database = Depends(get_db)):
    profile = fetch_profile(db, user_id_of(current))
    return {
        "user": user_to_public(current),
        "profile": profile.model_dump(mode="json") if profile else None,
        "is_onboarded": bool(profile and profile.onboarding_completed),
    }


# Onboarding Endpoints
@app.get("/api/onboarding")
def get_onboarding(current=Depends(require_onboarding_pending), db: Database = Depends(get_db)):
    return wizard_for(db, current).summary()


@app.patch("/api/onboarding/identity")
def patch_onboarding_identity(
    body: IdentityPatch, current=Depends(require_onboarding_pending), db: Database = Depends(get_db)
):
    wizard = wizard_for(db, current)
    try:
        wizard.update_identity(body.model_dump(exclude_unset=True, exclude_none=True))
    except ValueError as e:
        raise bad_request(e)
    save_wizard(db, wizard)
    return wizard.summary()


@app.patch("/api/onboarding/academics")
def patch_onboarding_academics(
    body: AcademicsPatch, current=Depends(require_onboarding_pending), db: Database = Depends(get_db)
):
    wizard = wizard_for(db, current)
    try:
        wizard.update_academics(body.model_dump(exclude_unset=True, exclude_none=True))
    except ValueError as e:
        raise bad_request(e)
    save_wizard(db, wizard)
    return wizard.summary()


@app.post("/api/onboarding/academics/other-degrees")
def add_onboarding_degree(
    body: DegreeBody, current=Depends(require_onboarding_pending), db: Database = Depends(get_db)
):
    wizard = wizard_for(db, current)
    try:
        wizard.add_other_degree(body.degree)
    except ValueError as e:
        raise bad_request(e)
    save_wizard(db, wizard)
    return wizard.summary()


@app.delete("/api/onboarding/academics/other-degrees")
def remove_onboarding_degree(
    body: DegreeBody, current=Depends(require_onboarding_pending), db: Database = Depends(get_db)
):
    wizard = wizard_for(db, current)
    wizard.remove_other_degree(body.degree)
    save_wizard(db, wizard)
    return wizard.summary()


@app.post("/api/onboarding/academics/courses")
def add_onboarding_course(
    body: OnboardingCourse, current=Depends(require_onboarding_pending), db: Database = Depends(get_db)
):
    wizard = wizard_for(db, current)
    try:
        wizard.add_course(body)
    except ValueError as e:
        raise bad_request(e)
    save_wizard(db, wizard)
    return wizard.summary()


@app.delete("/api/onboarding/academics/courses/{index}")
def remove_onboarding_course(
    index: int, current=Depends(require_onboarding_pending), db: Database = Depends(get_db)
):
    wizard = wizard_for(db, current)
    try:
        wizard.remove_course(index)
    except ValueError as e:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(e))
    save_wizard(db, wizard)
    return wizard.summary()


@app.patch("/api/onboarding/contacts")
def patch_onboarding_contacts(
    body: ContactsPatch, current=Depends(require_onboarding_pending), db: Database = Depends(get_db)
):
    wizard = wizard_for(db, current)
    try:
        wizard.update_contacts(body.model_dump(exclude_unset=True, exclude_none=True))
    except ValueError as e:
        raise bad_request(e)
    save_wizard(db, wizard)
    return wizard.summary()


@app.put("/api/onboarding/photo")
async def put_onboarding_photo(
    file: UploadFile = File(...),
    current=Depends(require_onboarding_pending),
    db: Database = Depends(get_db),
):
    data = await file.read()
    wizard = wizard_for(db, current)
    try:
        wizard.set_photo(file.filename or "avatar", file.content_type, data)
    except ValueError as e:
        raise bad_request(e)
    save_wizard(db, wizard)
    return wizard.summary()


@app.delete("/api/onboarding/photo")
def delete_onboarding_photo(current=Depends(require_onboarding_pending), db: Database = Depends(get_db)):
    wizard = wizard_for(db, current)
    wizard.clear_photo()
    save_wizard(db, wizard)
    return wizard.summary()


@app.post("/api/onboarding/password")
def set_onboarding_password(
    body: NewPasswordBody, current=Depends(require_onboarding_pending), db: Database = Depends(get_db)
):
    wizard = wizard_for(db, current)
    if wizard.password_set:
        raise HTTPException(status.HTTP_409_CONFLICT, "Password already set")
    try:
        validate_new_password(body.password, body.confirm)
    except ValueError as e:
        raise bad_request(e)

    set_password(db, user_id_of(current), body.password)
    wizard.mark_password_set()
    save_wizard(db, wizard)
    return wizard.summary()


@app.post("/api/onboarding/next")
def onboarding_next(current=Depends(require_onboarding_pending), db: Database = Depends(get_db)):
    wizard = wizard_for(db, current)
    if not wizard.next():
        raise HTTPException(status.HTTP_409_CONFLICT, f"Cannot continue past the {wizard.step_name} step")
    save_wizard(db, wizard)
    return wizard.summary()


@app.post("/api/onboarding/back")
def onboarding_back(current=Depends(require_onboarding_pending), db: Database = Depends(get_db)):
    wizard = wizard_for(db, current)
    if not wizard.back():
        raise HTTPException(status.HTTP_409_CONFLICT, f"Cannot go back from the {wizard.step_name} step")
    save_wizard(db, wizard)
    return wizard.summary()


@app.post("/api/onboarding/complete")
def complete_onboarding(current=Depends(require_onboarding_pending), db: Database = Depends(get_db)):
    user_id = user_id_of(current)
    wizard = wizard_for(db, current)
    try:
        wizard.complete(db, AvatarBucket(db))
    except ValueError as e:
        raise bad_request(e)
    delete_draft(db, user_id)

    profile = fetch_profile(db, user_id)
    return {
        "profile": profile.model_dump(mode="json") if profile else None,
        "is_onboarded": True,
        "redirect": "/dashboard",
    }


# Profile Endpoints
@app.get("/api/profile")
def get_own_profile(current=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = user_id_of(current)
    profile = fetch_profile(db, user_id)
    if profile is None:
        raise HTTPException(404, "Profile not found")
    contacts = fetch_contacts(db, user_id)
    academics = hydrate_academics(profile.current_degree or "", fetch_experiences(db, user_id))
    return {
        "profile": profile.model_dump(mode="json"),
        "contacts": contacts.model_dump() if contacts else None,
        "academics": academics.model_dump(),
    }


@app.patch("/api/profile/identity")
def save_identity(body: ProfileIdentityBody, current=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = user_id_of(current)
    update_profile(db, user_id, {
        "first_name": body.first_name.strip(),
        "last_name": body.last_name.strip(),
        "bio": (body.bio or "").strip() or None,
    })
    return fetch_profile(db, user_id).model_dump(mode="json")


@app.put("/api/profile/photo")
async def save_photo(
    file: UploadFile = File(...),
    current=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    user_id = user_id_of(current)
    data = await file.read()
    try:
        validate_image(file.content_type, len(data))
    except ValueError as e:
        raise bad_request(e)

    url = AvatarBucket(db).upload(user_id, file.filename or "avatar", file.content_type, data)
    update_profile(db, user_id, {"avatar_url": url})
    return {"avatar_url": url}


@app.delete("/api/profile/photo")
def remove_photo(current=Depends(get_current_user), db: Database = Depends(get_db)):
    update_profile(db, user_id_of(current), {"avatar_url": None})
    return {"avatar_url": None}


@app.get("/api/profile/contacts")
def get_own_contacts(current=Depends(get_current_user), db: Database = Depends(get_db)):
    contacts = fetch_contacts(db, user_id_of(current))
    if contacts is None:
        raise HTTPException(404, "Contacts not found")
    return contacts.model_dump()


@app.put("/api/profile/contacts")
def save_contacts(body: OnboardingContacts, current=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = user_id_of(current)
    update_contacts(db, user_id, {
        "phone": body.phone.strip() or None,
        "linkedin_url": body.linkedin_url.strip() or None,
        "instagram": body.instagram.strip() or None,
        "visibility": body.visibility,
    })
    contacts = fetch_contacts(db, user_id)
    return contacts.model_dump() if contacts else None


@app.put("/api/profile/academics")
def save_academics(body: OnboardingAcademics, current=Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = user_id_of(current)
    try:
        current_degree = validate_current_degree(body.current_degree)
    except ValueError as e:
        raise bad_request(e)
    update_profile(db, user_id, {"current_degree": current_degree or None})
    replace_experiences(db, user_id, build_experience_rows(body))
    profile = fetch_profile(db, user_id)
    stored_degree = profile.current_degree if profile else current_degree
    return hydrate_academics(stored_degree or "", fetch_experiences(db, user_id)).model_dump()


@app.get("/api/profiles/{user_id}")
def get_student(user_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    profile = fetch_profile(db, user_id)
    is_self = user_id == user_id_of(current)
    if profile is None or not (profile.onboarding_completed or is_self):
        raise HTTPException(404, "Profile not found")

    card = to_card(SearchResult(profile=profile, experiences=fetch_experiences(db, user_id)))
    contacts = fetch_contacts(db, user_id)
    if contacts is not None and (is_self or contacts.visibility == "all_verified"):
        card["contacts"] = contacts.model_dump()
    else:
        card["contacts"] = None
    return card


@app.get("/api/degrees")
def get_degrees():
    return {"ug": BOCCONI_DEGREES["UG"], "msc": BOCCONI_DEGREES["MSC"], "all": ALL_DEGREES}


@app.get("/api/dashboard")
def get_dashboard(current=Depends(get_current_user), db: Database = Depends(get_db)):
    profile = fetch_profile(db, user_id_of(current))
    return {
        "email": current["email"],
        "profile": profile.model_dump(mode="json") if profile else None,
    }


# Storage Endpoints
@app.get("/api/storage/avatars/{path:path}")
def get_avatar(path: str, db: Database = Depends(get_db)):
    obj = AvatarBucket(db).download(path)
    if obj is None:
        raise HTTPException(404, "Object not found")
    data, content_type = obj
    return Response(content=data, media_type=content_type)


# Search Endpoints
@app.get("/api/search")
def search_directory(
    q: str = "",
    filter: SearchFilter = "all",
    offset: int = Query(0, ge=0),
    current=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    page = execute_search(db, user_id_of(current), q, filter, offset)
    return {
        "results": [to_card(r) for r in page.results],
        "has_more": page.has_more,
    }


@app.websocket("/api/search/ws")
async def search_socket(websocket: WebSocket, token: str = "", db: Database = Depends(get_db)):
    user = resolve_token_user(db, token)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    user_id = user_id_of(user)
    await websocket.accept()

    async def fetch_page(query: str, search_filter: str, offset: int):
        return await run_in_threadpool(execute_search, db, user_id, query, search_filter, offset)

    controller = SearchController(fetch_page, user_id, on_change=websocket.send_json)
    controller.start()
    try:
        while True:
            message = await websocket.receive_json()
            kind = message.get("type")
            if kind == "query":
                controller.set_query(str(message.get("value", "")))
            elif kind == "filter":
                try:
                    controller.set_filter(str(message.get("value", "")))
                except ValueError as e:
                    await websocket.send_json({"error": str(e)})
            elif kind == "load_more":
                controller.load_more()
            else:
                await websocket.send_json({"error": f"Unknown message type: {kind}"})
    except WebSocketDisconnect:
        logger.debug(f"Search socket closed for {user_id}")
    finally:
        await controller.aclose()


@app.get("/")
def read_root():
    return {"message": "bcontact API is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if database.db is None:
        return response
    try:
        response["collections"] = database.db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
