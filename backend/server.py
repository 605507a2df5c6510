from fastapi import FastAPI, APIRouter, HTTPException, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from starlette.middleware.cors import CORSMiddleware
import logging
from typing import List, Optional
from datetime import datetime, timedelta
import jwt
import bcrypt

from backend import config
from backend.consistency import compute_consistency
from backend.days import check_timezone, day_key, today
from backend.models import (
    ConsistencyView,
    JournalEntry,
    JournalEntryCreate,
    Meditation,
    MeditationCategory,
    MeditationComplete,
    MeditationHistory,
    RecentMeditation,
    RoutinePlaceholder,
    RoutineRecord,
    RoutineSave,
    SkinAnalysis,
    SkinAnalysisCreate,
    TokenResponse,
    UserCreate,
    UserLogin,
    UserResponse,
    assign_step_ids,
)
from backend.storage import MemoryStorage, Storage, StorageError

# Configure logging
logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

api_router = APIRouter(prefix="/api")
# Missing credentials are answered with 401 in get_current_user
security = HTTPBearer(auto_error=False)


def build_storage() -> Storage:
    """Storage selected by STORAGE_BACKEND."""
    if config.STORAGE_BACKEND == 'memory':
        logger.warning("Using in-memory storage; data is lost on restart")
        return MemoryStorage()
    if config.STORAGE_BACKEND == 'mongo':
        from backend.storage_mongo import MongoStorage
        return MongoStorage(config.MONGO_URL, config.DB_NAME)
    raise ValueError(f"Unknown STORAGE_BACKEND: {config.STORAGE_BACKEND}")


def get_storage(request: Request) -> Storage:
    return request.app.state.storage

# ==================== AUTH HELPERS ====================

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))

def create_token(user_id: str) -> str:
    payload = {
        'user_id': user_id,
        'exp': datetime.utcnow() + timedelta(hours=config.JWT_EXPIRATION_HOURS)
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)

def user_response(user: dict) -> UserResponse:
    return UserResponse(
        id=user['id'],
        email=user['email'],
        name=user['name'],
        created_at=user['created_at']
    )

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    storage: Storage = Depends(get_storage),
):
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"}
        )
    try:
        token = credentials.credentials
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = await storage.get_user(payload.get('user_id'))
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user

# ==================== AUTH ROUTES ====================

@api_router.post("/auth/register", response_model=TokenResponse)
async def register(user_data: UserCreate, storage: Storage = Depends(get_storage)):
    existing = await storage.get_user_by_email(user_data.email)
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")

    user = await storage.create_user(
        email=user_data.email,
        password_hash=hash_password(user_data.password),
        name=user_data.name.strip()
    )
    logger.info(f"Registered user {user['id']}")

    return TokenResponse(access_token=create_token(user['id']), user=user_response(user))

@api_router.post("/auth/login", response_model=TokenResponse)
async def login(credentials: UserLogin, storage: Storage = Depends(get_storage)):
    user = await storage.get_user_by_email(credentials.email)
    if not user or not verify_password(credentials.password, user['password']):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    return TokenResponse(access_token=create_token(user['id']), user=user_response(user))

@api_router.get("/auth/me", response_model=UserResponse)
async def get_me(current_user: dict = Depends(get_current_user)):
    return user_response(current_user)

# ==================== SKINCARE ROUTINE ====================

@api_router.post("/skincare-routine", response_model=RoutineRecord)
async def save_skincare_routine(
    routine: RoutineSave,
    current_user: dict = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    """Save the routine for a day; saving again for the same day replaces it"""
    steps = assign_step_ids(routine.steps)
    record = await storage.create_routine(
        user_id=current_user['id'],
        day=routine.date,
        steps=steps,
        notes=routine.notes,
        skin_status=routine.skin_status
    )
    logger.info(f"Saved routine for user {current_user['id']} on {record.date} ({len(steps)} steps)")
    return record

async def routine_for_day(user_id: str, day: str, storage: Storage):
    routine = await storage.get_routine_by_date(user_id, day)
    # A day without a routine is not an error
    if not routine:
        return RoutinePlaceholder(date=day)
    return routine

@api_router.get("/skincare-routine")
async def get_todays_skincare_routine(
    current_user: dict = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return await routine_for_day(current_user['id'], today().isoformat(), storage)

@api_router.get("/skincare-routine/{date}")
async def get_skincare_routine(
    date: str,
    current_user: dict = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    try:
        day = day_key(date)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date format")
    return await routine_for_day(current_user['id'], day, storage)

@api_router.get("/skincare-consistency", response_model=ConsistencyView)
async def get_skincare_consistency(
    current_user: dict = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return await compute_consistency(storage, current_user['id'])

# ==================== SKIN ANALYSIS HISTORY ====================

THUMBNAIL_CHARS = 200

def make_thumbnail(image: str) -> str:
    """Keep only the start of the image data; data URL prefixes are preserved"""
    if image.startswith('data:image') and ',' in image:
        prefix, data = image.split(',', 1)
        if len(data) > THUMBNAIL_CHARS:
            return f"{prefix},{data[:THUMBNAIL_CHARS]}..."
        return image
    if len(image) > THUMBNAIL_CHARS:
        return f"{image[:THUMBNAIL_CHARS]}..."
    return image

@api_router.post("/skin-analyses", response_model=SkinAnalysis)
async def save_skin_analysis(
    body: SkinAnalysisCreate,
    current_user: dict = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    """Store an analysis result produced by the analysis service"""
    record = await storage.create_skin_analysis(
        user_id=current_user['id'],
        image=make_thumbnail(body.image),
        analysis=body.analysis,
        summary=body.summary
    )
    logger.info(f"Stored skin analysis {record.id} for user {current_user['id']}")
    return record

@api_router.get("/skin-analysis-history", response_model=List[SkinAnalysis])
async def get_skin_analysis_history(
    current_user: dict = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return await storage.get_skin_analysis_history(current_user['id'])

# ==================== MEDITATIONS ====================

@api_router.get("/meditations/featured", response_model=Meditation)
async def get_featured_meditation(
    current_user: dict = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    featured = await storage.get_featured_meditation()
    if not featured:
        raise HTTPException(status_code=404, detail="No meditations available")
    return featured

@api_router.get("/meditations/categories", response_model=List[MeditationCategory])
async def get_meditation_categories(
    current_user: dict = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return await storage.get_meditation_categories()

@api_router.get("/meditations/recent", response_model=List[RecentMeditation])
async def get_recent_meditations(
    current_user: dict = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return await storage.get_recent_meditations(current_user['id'])

@api_router.post("/meditations/{meditation_id}/complete", response_model=MeditationHistory)
async def complete_meditation(
    meditation_id: int,
    body: Optional[MeditationComplete] = None,
    current_user: dict = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    """Record a finished meditation session"""
    meditation = await storage.get_meditation(meditation_id)
    if not meditation:
        raise HTTPException(status_code=404, detail="Meditation not found")

    is_favorite = body.is_favorite if body else False
    return await storage.record_meditation_history(current_user['id'], meditation_id, is_favorite)

# ==================== JOURNAL ====================

@api_router.post("/journal-entries", response_model=JournalEntry)
async def create_journal_entry(
    entry: JournalEntryCreate,
    current_user: dict = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return await storage.create_journal_entry(
        user_id=current_user['id'],
        title=entry.title,
        content=entry.content,
        mood=entry.mood,
        is_private=entry.is_private
    )

@api_router.get("/journal-entries", response_model=List[JournalEntry])
async def get_journal_entries(
    current_user: dict = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return await storage.get_journal_entries(current_user['id'])

@api_router.get("/journal-entries/{entry_id}", response_model=JournalEntry)
async def get_journal_entry(
    entry_id: str,
    current_user: dict = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    entry = await storage.get_journal_entry(current_user['id'], entry_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Journal entry not found")
    return entry

# ==================== HEALTH CHECK ====================

@api_router.get("/")
async def root():
    return {"message": "ClearSkin Wellness API", "version": "1.0.0"}

@api_router.get("/health")
async def health_check():
    return {"status": "healthy"}

# ==================== ERROR HANDLERS ====================

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {'loc': list(err.get('loc', [])), 'msg': err.get('msg'), 'type': err.get('type')}
        for err in exc.errors()
    ]
    logger.info(f"Rejected invalid request to {request.url.path}: {len(errors)} error(s)")
    return JSONResponse(status_code=400, content={"detail": errors})

async def http_exception_handler(request: Request, exc: HTTPException):
    if exc.status_code >= 500:
        logger.error(f"HTTP Error: {exc.detail} on {request.url.path}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)

async def storage_exception_handler(request: Request, exc: StorageError):
    logger.error(f"Storage failure on {request.url.path}: {exc!r}")
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {str(exc)}")
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

# ==================== APP ====================

def create_app(storage: Optional[Storage] = None) -> FastAPI:
    # Fail at startup rather than on every request
    check_timezone(config.APP_TIMEZONE)

    app = FastAPI(title="ClearSkin Wellness API", version="1.0.0")
    app.state.storage = storage or build_storage()

    app.include_router(api_router)

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StorageError, storage_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    @app.on_event("startup")
    async def init_storage():
        await app.state.storage.initialize()

    @app.on_event("shutdown")
    async def shutdown_storage():
        await app.state.storage.close()

    return app


app = create_app()
