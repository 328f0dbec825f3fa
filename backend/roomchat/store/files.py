"""File metadata lookups.

Uploads and the storage backend are handled elsewhere; the chat only needs
to resolve an already-uploaded file reference and check who owns it.
"""
import logging
import uuid
from typing import Optional

from pydantic import BaseModel, Field
from redis.asyncio import Redis as AsyncRedis

from .keys import FILE_KEY

logger = logging.getLogger(__name__)


class FileRecord(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    filename: str
    originalname: str
    mimetype: str
    size: int
    user: str

    def projection(self) -> dict:
        return {
            "_id": self.id,
            "filename": self.filename,
            "originalname": self.originalname,
            "mimetype": self.mimetype,
            "size": self.size,
        }


class FileStore:
    def __init__(self, redis: AsyncRedis) -> None:
        self.redis = redis

    async def save(self, record: FileRecord) -> FileRecord:
        await self.redis.hset(
            FILE_KEY.format(file_id=record.id),
            mapping={
                "filename": record.filename,
                "originalname": record.originalname,
                "mimetype": record.mimetype,
                "size": str(record.size),
                "user": record.user,
            },
        )
        return record

    async def get(self, file_id: str) -> Optional[FileRecord]:
        data = await self.redis.hgetall(FILE_KEY.format(file_id=file_id))
        if not data:
            return None
        return FileRecord(
            id=file_id,
            filename=data.get("filename", ""),
            originalname=data.get("originalname", ""),
            mimetype=data.get("mimetype", ""),
            size=int(data.get("size") or 0),
            user=data.get("user", ""),
        )
