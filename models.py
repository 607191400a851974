from sqlalchemy import Column, Text, String, DateTime, Integer, Float, Boolean, Index, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid_utils
import uuid


def generate_uuid7():
    """Generate UUIDv7 and convert to standard Python UUID"""
    uuid7_obj = uuid_utils.uuid7()
    return uuid.UUID(str(uuid7_obj))


def _new_id():
    return str(generate_uuid7())


# JSONB on Postgres (Supabase), plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

Base = declarative_base()


class Template(Base):
    __tablename__ = 'templates'

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(500), nullable=False)
    description = Column(Text)
    category = Column(String(100), index=True)
    source_video_id = Column(String(100), index=True)
    source_url = Column(String(2000))
    author_name = Column(String(200))
    author_id = Column(String(100))
    author_verified = Column(Boolean, default=False, nullable=False)
    hashtags = Column(JSONType)
    structure = Column(JSONType)
    stats = Column(JSONType)
    trend_data = Column(JSONType)
    analysis = Column(JSONType)
    template_metadata = Column('metadata', JSONType)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime, default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return (
            f"<Template(id={self.id}, category='{self.category}', title='{(self.title or '')[:30]}...', "
            f"source_video_id='{self.source_video_id}')>"
        )


class Sound(Base):
    __tablename__ = 'sounds'

    # Keyed by the platform's music id
    id = Column(String(100), primary_key=True)
    title = Column(String(500), nullable=False)
    author_name = Column(String(200))
    play_url = Column(String(2000))
    duration = Column(Float)
    album = Column(String(500))
    cover_thumb = Column(String(2000))
    cover_medium = Column(String(2000))
    cover_large = Column(String(2000))
    original = Column(Boolean, default=False, nullable=False)
    is_remix = Column(Boolean, default=False, nullable=False)
    genre = Column(String(100), index=True)
    sound_category = Column(String(50), index=True)
    tempo = Column(String(20))
    usage_count = Column(Integer, default=0, nullable=False, index=True)
    stats = Column(JSONType)
    usage_history = Column(JSONType)
    lifecycle = Column(JSONType)
    related_template_ids = Column(JSONType)
    template_usage = Column(JSONType)
    template_correlations = Column(JSONType)
    sound_metadata = Column('metadata', JSONType)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Sound(id={self.id}, title='{(self.title or '')[:30]}', usage_count={self.usage_count})>"


class EtlJob(Base):
    __tablename__ = 'etl_jobs'

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(200), nullable=False)
    type = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False, index=True)
    start_time = Column(DateTime, index=True)
    end_time = Column(DateTime)
    duration_ms = Column(Integer)
    error = Column(Text)
    parameters = Column(JSONType)
    result = Column(JSONType)
    created_at = Column(DateTime, default=func.now(), nullable=False)

    __table_args__ = (
        Index('ix_etl_jobs_type_start', 'type', 'start_time'),
    )

    def __repr__(self):
        return f"<EtlJob(id={self.id}, type='{self.type}', status='{self.status}')>"


class EtlErrorRecord(Base):
    __tablename__ = 'etl_errors'

    id = Column(String(36), primary_key=True, default=_new_id)
    job_id = Column(String(36), index=True)
    error_type = Column(String(50), nullable=False, index=True)
    phase = Column(String(50), nullable=False)
    message = Column(Text, nullable=False)
    item_id = Column(String(200))
    context = Column(JSONType)
    created_at = Column(DateTime, default=func.now(), nullable=False)

    def __repr__(self):
        return f"<EtlErrorRecord(id={self.id}, job_id={self.job_id}, type='{self.error_type}')>"


class Notification(Base):
    __tablename__ = 'notifications'

    id = Column(String(36), primary_key=True, default=_new_id)
    kind = Column(String(50), nullable=False)
    title = Column(String(500), nullable=False)
    message = Column(Text)
    job_id = Column(String(36), index=True)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Notification(id={self.id}, kind='{self.kind}', title='{self.title[:30]}')>"


class SoundTrendReport(Base):
    __tablename__ = 'sound_trend_reports'

    id = Column(String(36), primary_key=True, default=_new_id)
    date = Column(String(10), nullable=False, index=True)
    top_sounds = Column(JSONType)
    emerging_sounds = Column(JSONType)
    peaking_sounds = Column(JSONType)
    declining_sounds = Column(JSONType)
    genre_distribution = Column(JSONType)
    created_at = Column(DateTime, default=func.now(), nullable=False)

    def __repr__(self):
        return f"<SoundTrendReport(id={self.id}, date='{self.date}')>"
