"""
Storage seam for the API.

``Storage`` lists every read/write the routes and the consistency engine
need. ``MemoryStorage`` keeps everything in per-instance dicts and is what
the tests inject; ``backend.storage_mongo.MongoStorage`` is the production
implementation. The app picks one at startup (see ``create_app``).
"""
import abc
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from backend.models import (
    JournalEntry,
    Meditation,
    MeditationCategory,
    MeditationHistory,
    RecentMeditation,
    RoutineRecord,
    RoutineStep,
    SkinAnalysis,
)


class StorageError(Exception):
    """The backing store failed or could not be reached."""


# ==================== MEDITATION CATALOG ====================

DEFAULT_MEDITATIONS = [
    {
        'id': 1,
        'title': "Stress Relief for Clearer Skin",
        'description': "This meditation helps reduce stress hormones that can trigger skin problems. "
                       "Practice regularly for best results.",
        'audio_url': "/assets/meditations/stress-relief.mp3",
        'image_url': "https://images.unsplash.com/photo-1520206183501-b80df61043c2?auto=format&fit=crop&w=800&h=400",
        'duration': 8,
        'category': "stress-relief",
        'level': "beginner",
    },
    {
        'id': 2,
        'title': "Morning Skin Positivity",
        'description': "Start your day with positive affirmations about your skin and body.",
        'audio_url': "/assets/meditations/morning-positivity.mp3",
        'image_url': "https://images.unsplash.com/photo-1519834785169-98be25ec3f84?auto=format&fit=crop&w=800&h=400",
        'duration': 5,
        'category': "self-acceptance",
        'level': "beginner",
    },
    {
        'id': 3,
        'title': "Bedtime Relaxation",
        'description': "Calm your mind and body before sleep, promoting better rest and skin recovery.",
        'audio_url': "/assets/meditations/bedtime-relaxation.mp3",
        'image_url': "https://images.unsplash.com/photo-1511295742362-92c96b055702?auto=format&fit=crop&w=800&h=400",
        'duration': 10,
        'category': "better-sleep",
        'level': "beginner",
    },
]

# Ordered: category ids are positions in this list
MEDITATION_CATEGORIES = {
    'stress-relief': {'name': 'Stress Relief', 'icon': 'mental-health', 'color': 'primary'},
    'self-acceptance': {'name': 'Self-Acceptance', 'icon': 'emotion-happy', 'color': 'secondary'},
    'better-sleep': {'name': 'Better Sleep', 'icon': 'sleep', 'color': 'accent'},
    'focus-clarity': {'name': 'Focus & Clarity', 'icon': 'focus', 'color': 'primary-light'},
}

RECENT_MEDITATIONS_LIMIT = 5


def build_categories(meditations: List[Meditation]) -> List[MeditationCategory]:
    counts: Dict[str, int] = {}
    for meditation in meditations:
        counts[meditation.category] = counts.get(meditation.category, 0) + 1
    return [
        MeditationCategory(id=index + 1, count=counts.get(key, 0), **info)
        for index, (key, info) in enumerate(MEDITATION_CATEGORIES.items())
    ]


def format_last_played(completed_at: datetime, now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    days_ago = (now - completed_at).days
    if days_ago <= 0:
        return "today"
    if days_ago == 1:
        return "yesterday"
    return f"{days_ago}d ago"


def to_recent(meditation: Meditation, history: MeditationHistory) -> RecentMeditation:
    color = MEDITATION_CATEGORIES.get(meditation.category, {}).get('color', 'primary')
    return RecentMeditation(
        id=meditation.id,
        title=meditation.title,
        duration=meditation.duration,
        last_played=format_last_played(history.completed_at),
        color=color,
    )


# ==================== INTERFACE ====================

class Storage(abc.ABC):

    # Users are plain dicts: {'id', 'email', 'name', 'password', 'created_at'}
    @abc.abstractmethod
    async def get_user(self, user_id: str) -> Optional[dict]:
        ...

    @abc.abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[dict]:
        ...

    @abc.abstractmethod
    async def create_user(self, email: str, password_hash: str, name: str) -> dict:
        ...

    # Routines
    @abc.abstractmethod
    async def create_routine(
        self,
        user_id: str,
        day: str,
        steps: List[RoutineStep],
        notes: Optional[str] = None,
        skin_status: Optional[str] = None,
    ) -> RoutineRecord:
        """Save the routine for ``(user_id, day)``, replacing an earlier save for that day."""

    @abc.abstractmethod
    async def get_routine_by_date(self, user_id: str, day: str) -> Optional[RoutineRecord]:
        ...

    @abc.abstractmethod
    async def get_history(self, user_id: str, since_day: str) -> List[RoutineRecord]:
        """Routines dated ``since_day`` or later, newest first."""

    # Skin analyses
    @abc.abstractmethod
    async def create_skin_analysis(
        self, user_id: str, image: str, analysis: dict, summary: str
    ) -> SkinAnalysis:
        ...

    @abc.abstractmethod
    async def get_skin_analysis_history(self, user_id: str) -> List[SkinAnalysis]:
        """The user's analyses, newest first."""

    # Journal
    @abc.abstractmethod
    async def create_journal_entry(
        self,
        user_id: str,
        title: str,
        content: str,
        mood: Optional[str] = None,
        is_private: bool = True,
    ) -> JournalEntry:
        ...

    @abc.abstractmethod
    async def get_journal_entries(self, user_id: str) -> List[JournalEntry]:
        ...

    @abc.abstractmethod
    async def get_journal_entry(self, user_id: str, entry_id: str) -> Optional[JournalEntry]:
        ...

    # Meditations
    @abc.abstractmethod
    async def get_meditation(self, meditation_id: int) -> Optional[Meditation]:
        ...

    @abc.abstractmethod
    async def get_featured_meditation(self) -> Optional[Meditation]:
        ...

    @abc.abstractmethod
    async def get_meditation_categories(self) -> List[MeditationCategory]:
        ...

    @abc.abstractmethod
    async def get_recent_meditations(self, user_id: str) -> List[RecentMeditation]:
        ...

    @abc.abstractmethod
    async def record_meditation_history(
        self, user_id: str, meditation_id: int, is_favorite: bool = False
    ) -> MeditationHistory:
        ...

    async def initialize(self):
        pass

    async def close(self):
        pass


# ==================== IN-MEMORY ====================

class MemoryStorage(Storage):
    """Dict-backed storage. Each instance is independent."""

    def __init__(self):
        self.users: Dict[str, dict] = {}
        self.routines: Dict[Tuple[str, str], RoutineRecord] = {}
        self.journal_entries: Dict[str, JournalEntry] = {}
        self.skin_analyses: List[SkinAnalysis] = []
        self.meditations: Dict[int, Meditation] = {
            m['id']: Meditation(**m) for m in DEFAULT_MEDITATIONS
        }
        self.meditation_history: List[MeditationHistory] = []

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def get_user_by_email(self, email):
        for user in self.users.values():
            if user['email'] == email:
                return user
        return None

    async def create_user(self, email, password_hash, name):
        user = {
            'id': str(uuid.uuid4()),
            'email': email,
            'password': password_hash,
            'name': name,
            'created_at': datetime.utcnow(),
        }
        self.users[user['id']] = user
        return user

    async def create_routine(self, user_id, day, steps, notes=None, skin_status=None):
        now = datetime.utcnow()
        existing = self.routines.get((user_id, day))
        record = RoutineRecord(
            id=existing.id if existing else str(uuid.uuid4()),
            user_id=user_id,
            date=day,
            steps=list(steps),
            notes=notes,
            skin_status=skin_status,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self.routines[(user_id, day)] = record
        return record

    async def get_routine_by_date(self, user_id, day):
        return self.routines.get((user_id, day))

    async def get_history(self, user_id, since_day):
        records = [
            r for (owner, day), r in self.routines.items()
            if owner == user_id and day >= since_day
        ]
        return sorted(records, key=lambda r: r.date, reverse=True)

    async def create_skin_analysis(self, user_id, image, analysis, summary):
        record = SkinAnalysis(
            id=str(uuid.uuid4()),
            user_id=user_id,
            image=image,
            analysis=analysis,
            summary=summary,
            created_at=datetime.utcnow(),
        )
        self.skin_analyses.append(record)
        return record

    async def get_skin_analysis_history(self, user_id):
        # Walk newest inserts first so equal timestamps keep write order
        analyses = [a for a in reversed(self.skin_analyses) if a.user_id == user_id]
        return sorted(analyses, key=lambda a: a.created_at, reverse=True)

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
        self.journal_entries[entry.id] = entry
        return entry

    async def get_journal_entries(self, user_id):
        entries = [e for e in self.journal_entries.values() if e.user_id == user_id]
        return sorted(entries, key=lambda e: e.created_at, reverse=True)

    async def get_journal_entry(self, user_id, entry_id):
        entry = self.journal_entries.get(entry_id)
        if entry and entry.user_id == user_id:
            return entry
        return None

    async def get_meditation(self, meditation_id):
        return self.meditations.get(meditation_id)

    async def get_featured_meditation(self):
        if not self.meditations:
            return None
        return self.meditations[min(self.meditations)]

    async def get_meditation_categories(self):
        return build_categories(list(self.meditations.values()))

    async def get_recent_meditations(self, user_id):
        history = [h for h in self.meditation_history if h.user_id == user_id]
        history.sort(key=lambda h: h.completed_at, reverse=True)
        recent = []
        for item in history[:RECENT_MEDITATIONS_LIMIT]:
            meditation = self.meditations.get(item.meditation_id)
            if meditation:
                recent.append(to_recent(meditation, item))
        return recent

    async def record_meditation_history(self, user_id, meditation_id, is_favorite=False):
        history = MeditationHistory(
            id=str(uuid.uuid4()),
            user_id=user_id,
            meditation_id=meditation_id,
            completed_at=datetime.utcnow(),
            is_favorite=is_favorite,
        )
        self.meditation_history.append(history)
        return history
