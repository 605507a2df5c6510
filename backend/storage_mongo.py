import logging
import uuid
from datetime import datetime
from functools import wraps

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from backend.models import (
    JournalEntry,
    Meditation,
    MeditationHistory,
    RoutineRecord,
    SkinAnalysis,
)
from backend.storage import (
    DEFAULT_MEDITATIONS,
    RECENT_MEDITATIONS_LIMIT,
    Storage,
    StorageError,
    build_categories,
    to_recent,
)

logger = logging.getLogger(__name__)

# Old duplicate rows may lack updated_at; created_at breaks those ties
LATEST_WRITE_FIRST = [('updated_at', DESCENDING), ('created_at', DESCENDING)]


def storage_errors(func):
    """Re-raise driver failures as StorageError."""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except PyMongoError as e:
            logger.error(f"MongoDB error in {func.__name__}: {str(e)}")
            raise StorageError(func.__name__) from e
    return wrapper


def routine_from_doc(doc: dict) -> RoutineRecord:
    return RoutineRecord(
        id=doc['id'],
        user_id=doc['user_id'],
        date=doc['date'],
        steps=doc.get('steps', []),
        notes=doc.get('notes'),
        skin_status=doc.get('skin_status'),
        created_at=doc['created_at'],
        updated_at=doc.get('updated_at', doc['created_at']),
    )


class MongoStorage(Storage):
    """MongoDB storage over motor.

    Routines are keyed by ``(user_id, date)`` where ``date`` is the ISO
    calendar day; a unique index makes each save a true upsert.
    """

    def __init__(self, mongo_url: str, db_name: str):
        self.client = AsyncIOMotorClient(mongo_url)
        self.db = self.client[db_name]

    # (collection, keys, options); created one by one so a failure on one
    # does not skip the rest
    INDEXES = [
        ('users', [('email', ASCENDING)], {'unique': True}),
        ('skincare_routines', [('user_id', ASCENDING), ('date', ASCENDING)], {'unique': True, 'name': 'uk_user_date'}),
        ('skin_analyses', [('user_id', ASCENDING), ('created_at', DESCENDING)], {}),
        ('journal_entries', [('user_id', ASCENDING), ('created_at', DESCENDING)], {}),
        ('meditation_history', [('user_id', ASCENDING), ('completed_at', DESCENDING)], {}),
    ]

    async def ensure_indexes(self) -> bool:
        """Create every index; returns False if any could not be created."""
        ok = True
        for collection, keys, options in self.INDEXES:
            try:
                await self.db[collection].create_index(keys, **options)
            except PyMongoError as e:
                # Historical duplicate rows block uk_user_date; reads still
                # resolve them by latest write.
                logger.warning(f"Could not create index on {collection}: {str(e)}")
                ok = False
        return ok

    @storage_errors
    async def initialize(self):
        """Create indexes and seed the meditation catalog if it is empty."""
        await self.ensure_indexes()
        if await self.db.meditations.count_documents({}) == 0:
            now = datetime.utcnow()
            await self.db.meditations.insert_many(
                [{**m, 'created_at': now} for m in DEFAULT_MEDITATIONS]
            )
            logger.info(f"Seeded {len(DEFAULT_MEDITATIONS)} meditations")

    async def close(self):
        self.client.close()

    # ==================== USERS ====================

    @storage_errors
    async def get_user(self, user_id):
        return await self.db.users.find_one({'id': user_id}, {'_id': 0})

    @storage_errors
    async def get_user_by_email(self, email):
        return await self.db.users.find_one({'email': email}, {'_id': 0})

    @storage_errors
    async def create_user(self, email, password_hash, name):
        user = {
            'id': str(uuid.uuid4()),
            'email': email,
            'password': password_hash,
            'name': name,
            'created_at': datetime.utcnow(),
        }
        await self.db.users.insert_one(user)
        user.pop('_id', None)
        return user

    # ==================== ROUTINES ====================

    @storage_errors
    async def create_routine(self, user_id, day, steps, notes=None, skin_status=None):
        now = datetime.utcnow()
        doc = await self.db.skincare_routines.find_one_and_update(
            {'user_id': user_id, 'date': day},
            {
                '$set': {
                    'steps': [s.model_dump() for s in steps],
                    'notes': notes,
                    'skin_status': skin_status,
                    'updated_at': now,
                },
                # user_id and date come from the filter on insert
                '$setOnInsert': {
                    'id': str(uuid.uuid4()),
                    'created_at': now,
                },
            },
            projection={'_id': 0},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return routine_from_doc(doc)

    @storage_errors
    async def get_routine_by_date(self, user_id, day):
        cursor = (
            self.db.skincare_routines
            .find({'user_id': user_id, 'date': day}, {'_id': 0})
            .sort(LATEST_WRITE_FIRST)
            .limit(1)
        )
        docs = await cursor.to_list(length=1)
        return routine_from_doc(docs[0]) if docs else None

    @storage_errors
    async def get_history(self, user_id, since_day):
        cursor = (
            self.db.skincare_routines
            .find({'user_id': user_id, 'date': {'$gte': since_day}}, {'_id': 0})
            .sort('date', DESCENDING)
        )
        return [routine_from_doc(doc) async for doc in cursor]

    # ==================== SKIN ANALYSES ====================

    @storage_errors
    async def create_skin_analysis(self, user_id, image, analysis, summary):
        record = SkinAnalysis(
            id=str(uuid.uuid4()),
            user_id=user_id,
            image=image,
            analysis=analysis,
            summary=summary,
            created_at=datetime.utcnow(),
        )
        await self.db.skin_analyses.insert_one(record.model_dump())
        return record

    @storage_errors
    async def get_skin_analysis_history(self, user_id):
        cursor = (
            self.db.skin_analyses
            .find({'user_id': user_id}, {'_id': 0})
            .sort([('created_at', DESCENDING), ('_id', DESCENDING)])
        )
        return [SkinAnalysis(**doc) async for doc in cursor]

    # ==================== JOURNAL ====================

    @storage_errors
    async def create_journal_entry(self, user_id, title, content, mood=None, is_private=True):
        now = datetime.utcnow()
        entry = JournalEntry(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            content=content,
            mood=mood,
            is_private=is_private,
            created_at=now,
            updated_at=now,
        )
        await self.db.journal_entries.insert_one(entry.model_dump())
        return entry

    @storage_errors
    async def get_journal_entries(self, user_id):
        cursor = (
            self.db.journal_entries
            .find({'user_id': user_id}, {'_id': 0})
            .sort('created_at', DESCENDING)
        )
        return [JournalEntry(**doc) async for doc in cursor]

    @storage_errors
    async def get_journal_entry(self, user_id, entry_id):
        doc = await self.db.journal_entries.find_one({'id': entry_id, 'user_id': user_id}, {'_id': 0})
        return JournalEntry(**doc) if doc else None

    # ==================== MEDITATIONS ====================

    @storage_errors
    async def get_meditation(self, meditation_id):
        doc = await self.db.meditations.find_one({'id': meditation_id}, {'_id': 0, 'created_at': 0})
        return Meditation(**doc) if doc else None

    @storage_errors
    async def get_featured_meditation(self):
        docs = await self.db.meditations.find({}, {'_id': 0, 'created_at': 0}).sort('id', ASCENDING).to_list(length=1)
        return Meditation(**docs[0]) if docs else None

    @storage_errors
    async def get_meditation_categories(self):
        docs = await self.db.meditations.find({}, {'_id': 0, 'created_at': 0}).to_list(length=None)
        return build_categories([Meditation(**doc) for doc in docs])

    @storage_errors
    async def get_recent_meditations(self, user_id):
        cursor = (
            self.db.meditation_history
            .find({'user_id': user_id}, {'_id': 0})
            .sort('completed_at', DESCENDING)
            .limit(RECENT_MEDITATIONS_LIMIT)
        )
        recent = []
        async for doc in cursor:
            history = MeditationHistory(**doc)
            meditation = await self.get_meditation(history.meditation_id)
            if meditation:
                recent.append(to_recent(meditation, history))
        return recent

    @storage_errors
    async def record_meditation_history(self, user_id, meditation_id, is_favorite=False):
        history = MeditationHistory(
            id=str(uuid.uuid4()),
            user_id=user_id,
            meditation_id=meditation_id,
            completed_at=datetime.utcnow(),
            is_favorite=is_favorite,
        )
        await self.db.meditation_history.insert_one(history.model_dump())
        return history
